"""tracelite server"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import (
    health,
    logs,
    otlp_logs,
    otlp_traces,
    query,
    traces,
)
from .config import settings


def create_app() -> FastAPI:
    app = FastAPI(
        title="tracelite",
        description="OpenTelemetry trace and log ingestion backed by PostgreSQL",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # OTLP/HTTP ingestion
    app.include_router(otlp_traces.router)
    app.include_router(otlp_logs.router)

    # Read and query routes
    app.include_router(traces.router)
    app.include_router(logs.router)
    app.include_router(query.router)

    # System routes
    app.include_router(health.router)

    return app


app = create_app()
