"""OTLP ingestion write pipeline.

A request is flattened into row sets, then written with bulk statements on the
caller's connection:

- traces: upsert that widens the stored bounds and accumulates span_count
- spans: insert, first write wins (ON CONFLICT DO NOTHING)
- span/log attributes: upsert, last write wins
- logs: plain insert (fresh ids never collide)

Nothing here commits. The caller owns the transaction (see
``database.get_connection``) and rolls back on any error, so a batch is either
stored completely or not at all.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Hashable, Iterable, Sequence, TypeVar, TYPE_CHECKING

from sqlalchemy import BigInteger, DateTime, cast, extract, func
from sqlalchemy.dialects.postgresql import Insert, insert
from sqlalchemy.exc import SQLAlchemyError

from tracelite_server.core.database import (
    log_attribute_table,
    log_table,
    span_attribute_table,
    span_table,
    trace_table,
)
from tracelite_server.core.exceptions import StorageError
from tracelite_server.core.otlp_flattener import (
    LogAttributeRecord,
    LogRecordRow,
    SpanAttributeRecord,
    SpanRecord,
    TraceRecord,
    flatten_logs_and_attrs,
    flatten_spans_and_attrs,
)

if TYPE_CHECKING:
    from opentelemetry.proto.collector.logs.v1.logs_service_pb2 import ExportLogsServiceRequest
    from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import ExportTraceServiceRequest
    from sqlalchemy.engine import Connection

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")


def process_trace_batch(
    request: ExportTraceServiceRequest,
    conn: Connection,
) -> dict[str, int]:
    """
    Flatten a trace export request and write it on ``conn``.

    Args:
        request: Decoded OTLP trace export request
        conn: Database connection with an open transaction

    Returns:
        Statistics dict with keys traces, spans, span_attributes

    Raises:
        InvalidIdentifier: If the request holds a malformed id or timestamp
            (raised before any statement is sent)
        StorageError: If any statement fails
    """
    traces, spans, span_attributes = flatten_spans_and_attrs(request)

    # Parents before children: span rows reference trace rows
    insert_traces(traces, conn)
    insert_spans(spans, conn)
    insert_span_attributes(span_attributes, conn)

    return {
        "traces": len(traces),
        "spans": len(spans),
        "span_attributes": len(span_attributes),
    }


def process_log_batch(
    request: ExportLogsServiceRequest,
    conn: Connection,
) -> dict[str, int]:
    """
    Flatten a logs export request and write it on ``conn``.

    Returns:
        Statistics dict with keys logs, log_attributes
    """
    logs, log_attributes = flatten_logs_and_attrs(request)

    insert_logs(logs, conn)
    insert_log_attributes(log_attributes, conn)

    return {"logs": len(logs), "log_attributes": len(log_attributes)}


def _interval_ns(interval: Any) -> Any:
    """SQL expression converting an interval into whole nanoseconds."""
    return cast(extract("epoch", interval) * 1_000_000_000, BigInteger)


def build_trace_upsert() -> Insert:
    """
    INSERT ... ON CONFLICT (id) DO UPDATE that widens an existing trace.

    started_at only moves earlier, ended_at only moves later, span_count
    accumulates, and duration_ns grows by exactly the distance the bounds
    moved (so an unchanged trace keeps its nanosecond-precise duration).
    """
    stmt = insert(trace_table)
    existing = trace_table.c
    excluded = stmt.excluded

    widened_start = func.least(existing.started_at, excluded.started_at, type_=DateTime(timezone=True))
    widened_end = func.greatest(existing.ended_at, excluded.ended_at, type_=DateTime(timezone=True))
    current_duration = func.coalesce(
        existing.duration_ns,
        _interval_ns(existing.ended_at - existing.started_at),
    )

    return stmt.on_conflict_do_update(
        index_elements=[existing.id],
        set_={
            "started_at": widened_start,
            "ended_at": widened_end,
            "duration_ns": current_duration
            + _interval_ns(existing.started_at - widened_start)
            + _interval_ns(widened_end - existing.ended_at),
            "span_count": existing.span_count + excluded.span_count,
        },
    )


def build_span_insert() -> Insert:
    """INSERT ... ON CONFLICT (id) DO NOTHING: spans are immutable once stored."""
    return insert(span_table).on_conflict_do_nothing(index_elements=[span_table.c.id])


def build_span_attribute_upsert() -> Insert:
    """INSERT ... ON CONFLICT (span_id, key) DO UPDATE SET value = EXCLUDED.value."""
    stmt = insert(span_attribute_table)
    return stmt.on_conflict_do_update(
        index_elements=[span_attribute_table.c.span_id, span_attribute_table.c.key],
        set_={"value": stmt.excluded.value},
    )


def build_log_insert() -> Insert:
    return insert(log_table)


def build_log_attribute_upsert() -> Insert:
    """INSERT ... ON CONFLICT (log_id, key) DO UPDATE SET value = EXCLUDED.value."""
    stmt = insert(log_attribute_table)
    return stmt.on_conflict_do_update(
        index_elements=[log_attribute_table.c.log_id, log_attribute_table.c.key],
        set_={"value": stmt.excluded.value},
    )


def insert_traces(traces: Sequence[TraceRecord], conn: Connection) -> None:
    """Upsert trace aggregates, widening rows that already exist."""
    if not traces:
        return

    # Consistent lock order across concurrent batches touching the same traces
    rows = [trace.to_row() for trace in sorted(traces, key=lambda t: t.trace_id)]
    _execute(conn, build_trace_upsert(), rows, "trace")


def insert_spans(spans: Sequence[SpanRecord], conn: Connection) -> None:
    """Insert spans; ids that already exist are left untouched."""
    if not spans:
        return

    # sorted() is stable, so the first occurrence of a repeated id still wins
    rows = [span.to_row() for span in sorted(spans, key=lambda s: s.span_id)]
    _execute(conn, build_span_insert(), rows, "span")


def insert_span_attributes(span_attributes: Sequence[SpanAttributeRecord], conn: Connection) -> None:
    """Upsert span attributes; the last value seen for a (span_id, key) wins."""
    if not span_attributes:
        return

    latest = _last_write_wins(span_attributes, key=lambda attr: (attr.span_id, attr.key))
    rows = [attr.to_row() for attr in sorted(latest, key=lambda a: (a.span_id, a.key))]
    _execute(conn, build_span_attribute_upsert(), rows, "span_attribute")


def insert_logs(logs: Sequence[LogRecordRow], conn: Connection) -> None:
    """Insert log records."""
    if not logs:
        return

    rows = [log.to_row() for log in logs]
    _execute(conn, build_log_insert(), rows, "log")


def insert_log_attributes(log_attributes: Sequence[LogAttributeRecord], conn: Connection) -> None:
    """Upsert log attributes; the last value seen for a (log_id, key) wins."""
    if not log_attributes:
        return

    latest = _last_write_wins(log_attributes, key=lambda attr: (attr.log_id, attr.key))
    rows = [attr.to_row() for attr in latest]
    _execute(conn, build_log_attribute_upsert(), rows, "log_attribute")


def _last_write_wins(rows: Iterable[RowT], key: Callable[[RowT], Hashable]) -> list[RowT]:
    """
    Collapse rows sharing a key, keeping the last occurrence.

    PostgreSQL rejects an ON CONFLICT DO UPDATE statement that would touch
    the same row twice, so repeated keys are resolved before sending.
    """
    latest: dict[Hashable, RowT] = {}
    for row in rows:
        latest[key(row)] = row
    return list(latest.values())


def _execute(conn: Connection, stmt: Insert, rows: list[dict[str, Any]], table_name: str) -> None:
    try:
        conn.execute(stmt, rows)
    except SQLAlchemyError as e:
        logger.error(f"Failed to write {len(rows)} {table_name} row(s): {e}", exc_info=True)
        raise StorageError(f"Failed to write {table_name} rows") from e

    logger.debug(f"Wrote {len(rows)} {table_name} row(s)")
