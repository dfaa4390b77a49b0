"""Time-series query endpoint."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.engine import Engine

from tracelite_server.api.errors import to_http_exception
from tracelite_server.core import timeseries
from tracelite_server.core.database import get_connection, get_engine
from tracelite_server.core.exceptions import TraceliteError
from tracelite_server.core.timeseries import TimeSeriesValue, parse_query_spec

router = APIRouter(prefix="/api", tags=["query"])
logger = logging.getLogger(__name__)


@router.post("/query")
def run_query(
    payload: Any = Body(...),
    engine: Engine = Depends(get_engine),
) -> list[TimeSeriesValue]:
    """
    Run a time-bucketed aggregate over spans.

    The body is validated here rather than by FastAPI so that every malformed
    query, structural or semantic, is reported as 400.
    """
    try:
        spec = parse_query_spec(payload)
        # Reject bad identifiers before a connection is checked out
        timeseries.build_timeseries_query(spec)
        with get_connection(engine) as conn:
            return timeseries.run_timeseries_query(conn, spec)
    except TraceliteError as e:
        logger.warning(f"Query rejected or failed: {e}")
        raise to_http_exception(e)
