"""Read endpoint for log records."""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy import desc, select
from sqlalchemy.engine import Engine

from tracelite_server.api.schemas import LogResponse
from tracelite_server.config import Settings, get_settings
from tracelite_server.core.database import get_connection, get_engine, log_table

router = APIRouter(prefix="/api", tags=["logs"])


def _log_from_row(row: Any) -> LogResponse:
    return LogResponse(
        log_id=row.id,
        trace_id=row.trace_id,
        span_id=row.span_id,
        timestamp=row.timestamp,
        observed_timestamp=row.observed_timestamp,
        severity_number=row.severity_number,
        severity_text=row.severity_text,
        body=row.body,
        instrumentation_library=row.instrumentation_library,
        service_name=row.service_name,
    )


@router.get("/logs")
def list_logs(
    limit: int = Query(100, ge=1),
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
) -> list[LogResponse]:
    """List the most recent log records."""
    query = (
        select(log_table)
        .order_by(desc(log_table.c.timestamp))
        .limit(min(limit, settings.max_page_size))
    )
    with get_connection(engine) as conn:
        rows = conn.execute(query).fetchall()

    return [_log_from_row(row) for row in rows]
