"""OTLP/HTTP log ingestion endpoint."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from opentelemetry.proto.collector.logs.v1.logs_service_pb2 import ExportLogsServiceRequest
from sqlalchemy.engine import Engine

from tracelite_server.api.errors import to_http_exception
from tracelite_server.api.schemas import IngestResponse
from tracelite_server.core import otlp_processor
from tracelite_server.core.database import get_connection, get_engine
from tracelite_server.core.exceptions import TraceliteError
from tracelite_server.core.otlp_parser import decompress_body, parse_logs_request

router = APIRouter(tags=["otlp"])
logger = logging.getLogger(__name__)


def _store_logs(engine: Engine, logs_request: ExportLogsServiceRequest) -> dict[str, int]:
    with get_connection(engine) as conn:
        return otlp_processor.process_log_batch(logs_request, conn)


@router.post("/v1/logs")
async def ingest_otlp_logs(
    request: Request,
    engine: Engine = Depends(get_engine),
) -> IngestResponse:
    """Ingest OTLP log records (protobuf or OTLP/JSON, optionally gzip-compressed)."""
    try:
        body = decompress_body(await request.body(), request.headers.get("content-encoding"))
        logs_request = parse_logs_request(body, request.headers.get("content-type"))
        stats = await run_in_threadpool(_store_logs, engine, logs_request)
    except TraceliteError as e:
        logger.warning(f"Rejected log export: {e}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to process log batch: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process logs")

    logger.info(f"Ingested {stats['logs']} log record(s), {stats['log_attributes']} attribute(s)")
    return IngestResponse()
