"""Unit tests for POST /api/query."""

from __future__ import annotations

from datetime import datetime, timezone

from tracelite_server.core import timeseries as timeseries_mod
from tracelite_server.core.exceptions import StorageError
from tracelite_server.core.timeseries import TimeSeriesValue


def test_query_returns_time_series(test_client, monkeypatch):
    captured = {}

    def fake_run(conn, spec):
        captured["spec"] = spec
        return [
            TimeSeriesValue(end_time=datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc), value=4.0),
        ]

    monkeypatch.setattr(timeseries_mod, "run_timeseries_query", fake_run)

    resp = test_client.post(
        "/api/query",
        json={
            "aggregate": {"agg_type": "Count", "source": "SpanColumn"},
            "filters": [],
            "time_bin": {"bin": "Minute", "value": 1},
        },
    )

    assert resp.status_code == 200
    data = resp.json()
    assert len(data) == 1
    assert data[0]["value"] == 4.0
    assert data[0]["end_time"].startswith("2024-01-01T00:01:00")
    assert captured["spec"].time_bin.bin == "minute"


def test_query_rejects_injection_before_connecting(test_client, mock_engine):
    resp = test_client.post(
        "/api/query",
        json={"filters": [{"column": "\"; DROP TABLE span;--", "value": "x"}]},
    )

    assert resp.status_code == 400
    mock_engine.connect.assert_not_called()


def test_query_rejects_malformed_body(test_client, mock_engine):
    resp = test_client.post("/api/query", json={"aggregate": {"agg_type": 42}})

    assert resp.status_code == 400
    mock_engine.connect.assert_not_called()


def test_query_storage_error_500(test_client, monkeypatch):
    def failing_run(conn, spec):
        raise StorageError("Time-series query failed")

    monkeypatch.setattr(timeseries_mod, "run_timeseries_query", failing_run)

    resp = test_client.post("/api/query", json={})

    assert resp.status_code == 500
