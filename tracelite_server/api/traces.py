"""Read endpoints for traces, spans and span attribute keys."""

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import and_, desc, exists, select
from sqlalchemy.engine import Engine
from sqlalchemy.sql import Select

from tracelite_server.api.errors import to_http_exception
from tracelite_server.api.schemas import SpanAttributeFilter, SpanResponse, TraceResponse
from tracelite_server.config import Settings, get_settings
from tracelite_server.core.database import (
    get_connection,
    get_engine,
    span_attribute_table,
    span_table,
    trace_table,
)
from tracelite_server.core.exceptions import InvalidQuery, NotFound, TraceliteError

router = APIRouter(prefix="/api", tags=["traces"])
logger = logging.getLogger(__name__)

_span_attribute_filters = TypeAdapter(List[SpanAttributeFilter])


def parse_span_attribute_filters(raw: Optional[str]) -> list[SpanAttributeFilter]:
    """Decode the ``span_attributes`` query parameter (JSON list of {key, value})."""
    if not raw:
        return []
    try:
        return _span_attribute_filters.validate_json(raw)
    except ValidationError as e:
        raise InvalidQuery(f"span_attributes must be a JSON list of {{key, value}} objects: {e.error_count()} error(s)") from e


def build_trace_search_query(
    service_name: Optional[str] = None,
    operation_name: Optional[str] = None,
    min_duration_ns: Optional[int] = None,
    max_duration_ns: Optional[int] = None,
    status_code: Optional[int] = None,
    span_attributes: Optional[list[SpanAttributeFilter]] = None,
    offset: int = 0,
    limit: int = 100,
) -> Select:
    """
    Build the trace search statement.

    Duration filters apply to the trace row. Span-level filters match traces
    that have at least one span satisfying all of them.
    """
    query = select(trace_table)

    if min_duration_ns is not None:
        query = query.where(trace_table.c.duration_ns >= min_duration_ns)
    if max_duration_ns is not None:
        query = query.where(trace_table.c.duration_ns <= max_duration_ns)

    span_conditions = []
    if service_name:
        span_conditions.append(span_table.c.service_name == service_name)
    if operation_name:
        span_conditions.append(span_table.c.operation_name == operation_name)
    if status_code is not None:
        span_conditions.append(span_table.c.status_code == status_code)

    for index, attribute in enumerate(span_attributes or []):
        attr = span_attribute_table.alias(f"attr_{index}")
        span_conditions.append(
            exists().where(
                and_(
                    attr.c.span_id == span_table.c.id,
                    attr.c.key == attribute.key,
                    attr.c.value == attribute.value,
                )
            )
        )

    if span_conditions:
        query = query.where(
            exists().where(and_(span_table.c.trace_id == trace_table.c.id, *span_conditions))
        )

    return (
        query.order_by(desc(trace_table.c.started_at), trace_table.c.id)
        .offset(offset)
        .limit(limit)
    )


def _trace_from_row(row: Any) -> TraceResponse:
    return TraceResponse(
        trace_id=row.id,
        start_time=row.started_at,
        end_time=row.ended_at,
        duration_ns=row.duration_ns,
        span_count=row.span_count,
    )


def _span_from_row(row: Any) -> SpanResponse:
    return SpanResponse(
        span_id=row.id,
        trace_id=row.trace_id,
        parent_span_id=row.parent_span_id,
        operation_name=row.operation_name,
        start_time=row.started_at,
        end_time=row.ended_at,
        duration_ns=row.duration_ns,
        status_code=row.status_code,
        status_message=row.status_message,
        span_kind=row.kind,
        instrumentation_library=row.instrumentation_library,
        service_name=row.service_name,
    )


@router.get("/traces")
def search_traces(
    service_name: Optional[str] = Query(None),
    operation_name: Optional[str] = Query(None),
    min_duration_ns: Optional[int] = Query(None, ge=0),
    max_duration_ns: Optional[int] = Query(None, ge=0),
    status_code: Optional[int] = Query(None, ge=0, le=2),
    span_attributes: Optional[str] = Query(None, description="JSON list of {key, value} objects"),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1),
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
) -> list[TraceResponse]:
    """Search traces, newest first."""
    try:
        attribute_filters = parse_span_attribute_filters(span_attributes)
    except TraceliteError as e:
        raise to_http_exception(e)

    query = build_trace_search_query(
        service_name=service_name,
        operation_name=operation_name,
        min_duration_ns=min_duration_ns,
        max_duration_ns=max_duration_ns,
        status_code=status_code,
        span_attributes=attribute_filters,
        offset=offset,
        limit=min(limit, settings.max_page_size),
    )

    with get_connection(engine) as conn:
        rows = conn.execute(query).fetchall()

    return [_trace_from_row(row) for row in rows]


def _load_trace(conn: Any, trace_id: str) -> Any:
    row = conn.execute(select(trace_table).where(trace_table.c.id == trace_id)).first()
    if row is None:
        raise NotFound(f"Trace {trace_id} not found")
    return row


@router.get("/traces/{trace_id}")
def get_trace(
    trace_id: str,
    engine: Engine = Depends(get_engine),
) -> TraceResponse:
    """Get a single trace aggregate by id."""
    try:
        with get_connection(engine) as conn:
            row = _load_trace(conn, trace_id)
    except TraceliteError as e:
        raise to_http_exception(e)

    return _trace_from_row(row)


@router.get("/traces/{trace_id}/spans")
def get_trace_spans(
    trace_id: str,
    engine: Engine = Depends(get_engine),
) -> list[SpanResponse]:
    """Get every span of a trace ordered by start time."""
    try:
        with get_connection(engine) as conn:
            _load_trace(conn, trace_id)
            rows = conn.execute(
                select(span_table)
                .where(span_table.c.trace_id == trace_id)
                .order_by(span_table.c.started_at, span_table.c.id)
            ).fetchall()
    except TraceliteError as e:
        raise to_http_exception(e)

    return [_span_from_row(row) for row in rows]


@router.get("/spans")
def list_spans(
    limit: int = Query(100, ge=1),
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
) -> list[SpanResponse]:
    """List the most recent spans."""
    query = (
        select(span_table)
        .order_by(desc(span_table.c.started_at), span_table.c.id)
        .limit(min(limit, settings.max_page_size))
    )
    with get_connection(engine) as conn:
        rows = conn.execute(query).fetchall()

    return [_span_from_row(row) for row in rows]


@router.get("/span-attributes")
def list_span_attribute_keys(
    engine: Engine = Depends(get_engine),
) -> list[str]:
    """Distinct span attribute keys, sorted (used to populate query builders)."""
    query = (
        select(span_attribute_table.c.key)
        .distinct()
        .order_by(span_attribute_table.c.key)
    )
    with get_connection(engine) as conn:
        keys = conn.execute(query).scalars().all()

    return list(keys)
