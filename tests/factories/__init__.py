"""Test data factories for OTLP export requests."""

from .otlp import (
    make_attributes,
    make_log_record,
    make_logs_request,
    make_span,
    make_trace_request,
    random_span_id,
    random_trace_id,
)

__all__ = [
    "make_attributes",
    "make_log_record",
    "make_logs_request",
    "make_span",
    "make_trace_request",
    "random_span_id",
    "random_trace_id",
]
