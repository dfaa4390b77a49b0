"""Pytest fixtures for tracelite tests."""

from .database import db_engine, db_connection
from .app import mock_engine, test_client

__all__ = [
    # Database fixtures
    "db_engine",
    "db_connection",
    # API fixtures
    "mock_engine",
    "test_client",
]
