"""Flatten OTLP export requests into relational rows.

A trace request becomes three row sets (trace aggregates, spans, span
attributes); a logs request becomes two (logs, log attributes). Flattening is
all-or-nothing: any malformed span id or timestamp rejects the whole
request. Log correlation ids are the exception and degrade to absent.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from opentelemetry.proto.collector.logs.v1.logs_service_pb2 import ExportLogsServiceRequest
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import ExportTraceServiceRequest
from opentelemetry.proto.resource.v1.resource_pb2 import Resource
from opentelemetry.proto.trace.v1.trace_pb2 import Span as ProtoSpan

from tracelite_server.core.exceptions import InvalidIdentifier
from tracelite_server.core.otlp_attributes import (
    any_value_to_string,
    attributes_to_pairs,
    find_string_attribute,
)

logger = logging.getLogger(__name__)

TRACE_ID_BYTES = 16
SPAN_ID_BYTES = 8
SERVICE_NAME_KEY = "service.name"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SPAN_KIND_NAMES = {
    0: "UNSPECIFIED",
    1: "INTERNAL",
    2: "SERVER",
    3: "CLIENT",
    4: "PRODUCER",
    5: "CONSUMER",
}


@dataclass
class TraceRecord:
    trace_id: str
    start_time: datetime
    end_time: datetime
    duration_ns: Optional[int]
    span_count: int

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.trace_id,
            "started_at": self.start_time,
            "ended_at": self.end_time,
            "duration_ns": self.duration_ns,
            "span_count": self.span_count,
        }


@dataclass
class SpanRecord:
    span_id: str
    trace_id: str
    parent_span_id: Optional[str]
    operation_name: str
    start_time: datetime
    end_time: datetime
    duration_ns: int
    status_code: int
    status_message: Optional[str]
    span_kind: str
    instrumentation_library: Optional[str]
    service_name: Optional[str]

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.span_id,
            "trace_id": self.trace_id,
            "parent_span_id": self.parent_span_id,
            "operation_name": self.operation_name,
            "started_at": self.start_time,
            "ended_at": self.end_time,
            "duration_ns": self.duration_ns,
            "status_code": self.status_code,
            "status_message": self.status_message,
            "kind": self.span_kind,
            "instrumentation_library": self.instrumentation_library,
            "service_name": self.service_name,
        }


@dataclass
class SpanAttributeRecord:
    span_id: str
    key: str
    value: str

    def to_row(self) -> dict[str, Any]:
        return {"span_id": self.span_id, "key": self.key, "value": self.value}


@dataclass
class LogRecordRow:
    log_id: uuid.UUID
    trace_id: Optional[str]
    span_id: Optional[str]
    timestamp: datetime
    observed_timestamp: Optional[datetime]
    severity_number: int
    severity_text: Optional[str]
    body: Optional[str]
    instrumentation_library: Optional[str]
    service_name: Optional[str]

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.log_id,
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "timestamp": self.timestamp,
            "observed_timestamp": self.observed_timestamp,
            "severity_number": self.severity_number,
            "severity_text": self.severity_text,
            "body": self.body,
            "instrumentation_library": self.instrumentation_library,
            "service_name": self.service_name,
        }


@dataclass
class LogAttributeRecord:
    log_id: uuid.UUID
    key: str
    value: str

    def to_row(self) -> dict[str, Any]:
        return {"log_id": self.log_id, "key": self.key, "value": self.value}


@dataclass
class _TraceBounds:
    """Running (min start, max end, count) for one trace id."""

    start_ns: int
    end_ns: int
    span_count: int = field(default=1)

    def widen(self, start_ns: int, end_ns: int) -> None:
        if start_ns < self.start_ns:
            self.start_ns = start_ns
        if end_ns > self.end_ns:
            self.end_ns = end_ns
        self.span_count += 1


def ns_to_datetime(nanos: int, what: str = "timestamp") -> datetime:
    """
    Convert nanoseconds since the Unix epoch to an aware UTC datetime.

    Sub-microsecond precision is truncated (datetime and PostgreSQL both
    store microseconds).

    Raises:
        InvalidIdentifier: If the instant is outside the datetime range
    """
    try:
        return _EPOCH + timedelta(microseconds=nanos // 1000)
    except OverflowError as e:
        raise InvalidIdentifier(f"Invalid {what}: {nanos}") from e


def encode_id(raw: bytes, expected_len: int, what: str) -> str:
    """Hex-encode a binary id after checking its length."""
    if len(raw) != expected_len:
        raise InvalidIdentifier(
            f"Invalid {what} length - expected {expected_len} bytes, got {len(raw)}"
        )
    return raw.hex()


def encode_optional_id(raw: bytes, expected_len: int, what: str) -> Optional[str]:
    """Like encode_id, but an empty id means "absent"."""
    if not raw:
        return None
    return encode_id(raw, expected_len, what)


def encode_correlation_id(raw: bytes, expected_len: int) -> Optional[str]:
    """Hex-encode a log's trace/span id; empty or wrong-length ids are dropped."""
    if len(raw) != expected_len:
        return None
    return raw.hex()


def extract_service_name(resource: Optional[Resource]) -> Optional[str]:
    """Resolve service.name from a resource's attributes (string values only)."""
    if resource is None:
        return None
    return find_string_attribute(resource.attributes, SERVICE_NAME_KEY)


def aggregate_traces(request: ExportTraceServiceRequest) -> dict[str, _TraceBounds]:
    """
    Reduce every span in the request into per-trace bounds.

    Single pass; min/max/count are order independent, so the result does
    not depend on how spans are grouped under resources and scopes.
    """
    bounds_by_trace: dict[str, _TraceBounds] = {}

    for resource_span in request.resource_spans:
        for scope_span in resource_span.scope_spans:
            for span in scope_span.spans:
                trace_id = encode_id(span.trace_id, TRACE_ID_BYTES, "trace_id")
                start_ns = span.start_time_unix_nano
                end_ns = span.end_time_unix_nano

                bounds = bounds_by_trace.get(trace_id)
                if bounds is None:
                    bounds_by_trace[trace_id] = _TraceBounds(start_ns, end_ns)
                else:
                    bounds.widen(start_ns, end_ns)

    return bounds_by_trace


def flatten_spans_and_attrs(
    request: ExportTraceServiceRequest,
) -> tuple[list[TraceRecord], list[SpanRecord], list[SpanAttributeRecord]]:
    """
    Flatten a trace export request into trace, span and span attribute rows.

    Args:
        request: Decoded OTLP trace export request

    Returns:
        (traces, spans, span_attributes)

    Raises:
        InvalidIdentifier: If any id has the wrong length or any timestamp
            cannot be represented; nothing is returned in that case
    """
    traces = [
        TraceRecord(
            trace_id=trace_id,
            start_time=ns_to_datetime(bounds.start_ns, "start time"),
            end_time=ns_to_datetime(bounds.end_ns, "end time"),
            duration_ns=bounds.end_ns - bounds.start_ns,
            span_count=bounds.span_count,
        )
        for trace_id, bounds in aggregate_traces(request).items()
    ]

    spans: list[SpanRecord] = []
    span_attributes: list[SpanAttributeRecord] = []

    for resource_span in request.resource_spans:
        resource = resource_span.resource if resource_span.HasField("resource") else None
        service_name = extract_service_name(resource)

        for scope_span in resource_span.scope_spans:
            instrumentation_library = None
            if scope_span.HasField("scope") and scope_span.scope.name:
                instrumentation_library = scope_span.scope.name

            for proto_span in scope_span.spans:
                span = _convert_proto_span(proto_span, instrumentation_library, service_name)
                spans.append(span)
                span_attributes.extend(
                    SpanAttributeRecord(span_id=span.span_id, key=key, value=value)
                    for key, value in attributes_to_pairs(proto_span.attributes)
                )

    logger.debug(
        f"Flattened {len(spans)} span(s) across {len(traces)} trace(s) "
        f"with {len(span_attributes)} attribute(s)"
    )
    return traces, spans, span_attributes


def _convert_proto_span(
    proto_span: ProtoSpan,
    instrumentation_library: Optional[str],
    service_name: Optional[str],
) -> SpanRecord:
    status_message = proto_span.status.message if proto_span.status.message else None

    return SpanRecord(
        span_id=encode_id(proto_span.span_id, SPAN_ID_BYTES, "span_id"),
        trace_id=encode_id(proto_span.trace_id, TRACE_ID_BYTES, "trace_id"),
        parent_span_id=encode_optional_id(proto_span.parent_span_id, SPAN_ID_BYTES, "parent_span_id"),
        operation_name=proto_span.name,
        start_time=ns_to_datetime(proto_span.start_time_unix_nano, "start time"),
        end_time=ns_to_datetime(proto_span.end_time_unix_nano, "end time"),
        duration_ns=proto_span.end_time_unix_nano - proto_span.start_time_unix_nano,
        status_code=int(proto_span.status.code),
        status_message=status_message,
        span_kind=SPAN_KIND_NAMES.get(proto_span.kind, "UNSPECIFIED"),
        instrumentation_library=instrumentation_library,
        service_name=service_name,
    )


def flatten_logs_and_attrs(
    request: ExportLogsServiceRequest,
) -> tuple[list[LogRecordRow], list[LogAttributeRecord]]:
    """
    Flatten a logs export request into log and log attribute rows.

    Each record receives a fresh UUID since OTLP log records carry no
    natural id. Correlation ids are optional; one of the wrong length is
    stored as absent rather than rejecting the batch.
    """
    logs: list[LogRecordRow] = []
    log_attributes: list[LogAttributeRecord] = []

    for resource_log in request.resource_logs:
        resource = resource_log.resource if resource_log.HasField("resource") else None
        service_name = extract_service_name(resource)

        for scope_log in resource_log.scope_logs:
            instrumentation_library = None
            if scope_log.HasField("scope") and scope_log.scope.name:
                instrumentation_library = scope_log.scope.name

            for record in scope_log.log_records:
                log_id = uuid.uuid4()

                observed_timestamp = None
                if record.observed_time_unix_nano:
                    observed_timestamp = ns_to_datetime(
                        record.observed_time_unix_nano, "observed timestamp"
                    )

                # Unknown event time falls back to the observed time
                if record.time_unix_nano == 0 and observed_timestamp is not None:
                    timestamp = observed_timestamp
                else:
                    timestamp = ns_to_datetime(record.time_unix_nano, "timestamp")

                logs.append(
                    LogRecordRow(
                        log_id=log_id,
                        trace_id=encode_correlation_id(record.trace_id, TRACE_ID_BYTES),
                        span_id=encode_correlation_id(record.span_id, SPAN_ID_BYTES),
                        timestamp=timestamp,
                        observed_timestamp=observed_timestamp,
                        severity_number=int(record.severity_number),
                        severity_text=record.severity_text or None,
                        body=any_value_to_string(record.body) if record.HasField("body") else None,
                        instrumentation_library=instrumentation_library,
                        service_name=service_name,
                    )
                )
                log_attributes.extend(
                    LogAttributeRecord(log_id=log_id, key=key, value=value)
                    for key, value in attributes_to_pairs(record.attributes)
                )

    logger.debug(f"Flattened {len(logs)} log record(s) with {len(log_attributes)} attribute(s)")
    return logs, log_attributes
