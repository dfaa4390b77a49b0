"""Health check API routes"""

import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..core.database import get_connection, get_engine

router = APIRouter(prefix="/api", tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health")
def health_check(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        dict containing health status and database round-trip latency.

    Raises:
        HTTPException: 503 if the database cannot be reached.
    """
    try:
        start = time.time()
        with get_connection(engine) as conn:
            conn.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Unhealthy: database unavailable")

    return {
        "status": "healthy",
        "database": "ok",
        "db_latency_ms": round(latency_ms, 1),
    }
