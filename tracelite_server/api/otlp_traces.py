"""OTLP/HTTP trace ingestion endpoint."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import ExportTraceServiceRequest
from sqlalchemy.engine import Engine

from tracelite_server.api.errors import to_http_exception
from tracelite_server.api.schemas import IngestResponse
from tracelite_server.core import otlp_processor
from tracelite_server.core.database import get_connection, get_engine
from tracelite_server.core.exceptions import TraceliteError
from tracelite_server.core.otlp_parser import decompress_body, parse_trace_request

router = APIRouter(tags=["otlp"])
logger = logging.getLogger(__name__)


def _store_traces(engine: Engine, trace_request: ExportTraceServiceRequest) -> dict[str, int]:
    with get_connection(engine) as conn:
        return otlp_processor.process_trace_batch(trace_request, conn)


@router.post("/v1/traces")
async def ingest_otlp_traces(
    request: Request,
    engine: Engine = Depends(get_engine),
) -> IngestResponse:
    """
    Ingest OTLP traces from OpenTelemetry exporters.

    Accepts the standard OTLP/HTTP encodings:
    - protobuf (Content-Type: application/x-protobuf or application/protobuf)
    - OTLP/JSON (Content-Type: application/json)

    The body may be gzip-compressed (Content-Encoding: gzip). The whole batch
    is stored in one transaction or not at all.
    """
    try:
        body = decompress_body(await request.body(), request.headers.get("content-encoding"))
        trace_request = parse_trace_request(body, request.headers.get("content-type"))
        stats = await run_in_threadpool(_store_traces, engine, trace_request)
    except TraceliteError as e:
        logger.warning(f"Rejected trace export: {e}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to process trace batch: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process traces")

    logger.info(
        f"Ingested {stats['spans']} span(s) across {stats['traces']} trace(s), "
        f"{stats['span_attributes']} attribute(s)"
    )
    return IngestResponse()
