"""
Test configuration and fixtures for tracelite tests

This module provides:
- Import of all fixtures from fixtures/ (database, API client)
- Import of all factories from factories/ (OTLP request builders)

Usage:
    # Route test without a database
    def test_health(test_client, mock_engine):
        response = test_client.get("/api/health")
        assert response.status_code == 200

    # Integration test against PostgreSQL
    @pytest.mark.integration
    def test_ingest(db_connection):
        from tests.factories import make_span, make_trace_request, random_trace_id
        process_trace_batch(make_trace_request([make_span(random_trace_id())]), db_connection)
"""

# Import all fixtures and factories for test usage
from tests.fixtures import *  # noqa: F401, F403
from tests.factories import *  # noqa: F401, F403
