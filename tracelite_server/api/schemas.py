"""API request/response schemas"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class IngestResponse(BaseModel):
    status: str = "success"


class TraceResponse(BaseModel):
    trace_id: str
    start_time: datetime
    end_time: datetime
    duration_ns: Optional[int] = Field(default=None, description="end_time - start_time in nanoseconds")
    span_count: int


class SpanResponse(BaseModel):
    span_id: str
    trace_id: str
    parent_span_id: Optional[str] = None
    operation_name: str
    start_time: datetime
    end_time: datetime
    duration_ns: int
    status_code: int = Field(description="0 = UNSET, 1 = OK, 2 = ERROR")
    status_message: Optional[str] = None
    span_kind: str
    instrumentation_library: Optional[str] = None
    service_name: Optional[str] = None


class LogResponse(BaseModel):
    log_id: UUID
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    timestamp: datetime
    observed_timestamp: Optional[datetime] = None
    severity_number: int
    severity_text: Optional[str] = None
    body: Optional[str] = None
    instrumentation_library: Optional[str] = None
    service_name: Optional[str] = None


class SpanAttributeFilter(BaseModel):
    key: str
    value: str
