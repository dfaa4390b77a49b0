"""Core ingestion, storage and query logic"""

from .exceptions import (
    TraceliteError,
    UnsupportedMediaType,
    DecodeError,
    InvalidIdentifier,
    StorageError,
    InvalidQuery,
    NotFound,
)
from .otlp_parser import parse_trace_request, parse_logs_request
from .otlp_processor import process_trace_batch, process_log_batch
from .timeseries import QuerySpec, TimeSeriesValue, run_timeseries_query

__all__ = [
    "TraceliteError",
    "UnsupportedMediaType",
    "DecodeError",
    "InvalidIdentifier",
    "StorageError",
    "InvalidQuery",
    "NotFound",
    "parse_trace_request",
    "parse_logs_request",
    "process_trace_batch",
    "process_log_batch",
    "QuerySpec",
    "TimeSeriesValue",
    "run_timeseries_query",
]
