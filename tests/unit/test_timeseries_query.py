"""Tests for the time-series query builder.

Every identifier must come from the column allow-list; everything else is a
bound parameter. Invalid queries never reach the connection.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from tracelite_server.core.exceptions import InvalidQuery, StorageError
from tracelite_server.core.timeseries import (
    NUMERIC_VALUE_PATTERN,
    QuerySpec,
    build_timeseries_query,
    parse_query_spec,
    run_timeseries_query,
)

INJECTION = "\"; DROP TABLE span;--"


def _spec(**fields) -> QuerySpec:
    return parse_query_spec(fields)


def test_default_spec_counts_spans_per_minute():
    sql, params = build_timeseries_query(QuerySpec())

    assert "COUNT(*)" in sql
    assert "FLOOR(EXTRACT(EPOCH FROM s.started_at) / 60) * 60 + 60" in sql
    assert "FROM span s" in sql
    assert "WHERE" not in sql
    assert params == {}


def test_count_example_from_frontend():
    spec = _spec(aggregate={"agg_type": "Count", "source": "SpanColumn"}, time_bin={"bin": "Minute", "value": 1})

    sql, _ = build_timeseries_query(spec)

    assert "COALESCE(CAST(COUNT(*) AS DOUBLE PRECISION), 0.0) AS value" in sql


def test_sum_over_numeric_column():
    spec = _spec(aggregate={"agg_type": {"Sum": "duration_ns"}})

    sql, _ = build_timeseries_query(spec)

    assert "SUM(s.duration_ns)" in sql


def test_count_over_column_counts_non_null_values():
    spec = _spec(aggregate={"agg_type": {"Count": "parent_span_id"}})

    sql, _ = build_timeseries_query(spec)

    assert "COUNT(s.parent_span_id)" in sql


def test_span_id_maps_to_primary_key_column():
    spec = _spec(group="span_id")

    sql, _ = build_timeseries_query(spec)

    assert "CAST(s.id AS TEXT) AS group_value" in sql


def test_numeric_aggregate_on_text_column_is_rejected():
    with pytest.raises(InvalidQuery):
        build_timeseries_query(_spec(aggregate={"agg_type": {"Avg": "operation_name"}}))


def test_filters_are_bound_parameters():
    spec = _spec(
        filters=[
            {"column": "service_name", "value": "o'hara"},
            {"column": "status_code", "value": 2},
        ]
    )

    sql, params = build_timeseries_query(spec)

    assert "CAST(s.service_name AS TEXT) = :filter_0" in sql
    assert "CAST(s.status_code AS TEXT) = :filter_1" in sql
    assert "o'hara" not in sql
    assert params == {"filter_0": "o'hara", "filter_1": "2"}


def test_group_orders_by_bucket_then_group():
    sql, _ = build_timeseries_query(_spec(group="service_name"))

    assert "GROUP BY 1, 3" in sql
    assert "ORDER BY 1, 3" in sql


def test_hour_bins_multiply_width():
    sql, _ = build_timeseries_query(_spec(time_bin={"bin": "HOUR", "value": 2}))

    assert "/ 7200) * 7200 + 7200" in sql


def test_attribute_aggregate_joins_on_bound_key():
    spec = _spec(aggregate={"agg_type": {"Avg": "http.response_size"}, "source": "SpanAttribute"})

    sql, params = build_timeseries_query(spec)

    assert "JOIN span_attribute a ON a.span_id = s.id AND a.key = :attribute_key" in sql
    assert "a.value ~ :numeric_pattern" in sql
    assert "AVG(CASE WHEN a.value ~ :numeric_pattern THEN CAST(a.value AS DOUBLE PRECISION) END)" in sql
    assert params["attribute_key"] == "http.response_size"
    assert params["numeric_pattern"] == NUMERIC_VALUE_PATTERN


def test_attribute_count_needs_no_numeric_pattern():
    spec = _spec(aggregate={"agg_type": {"Count": INJECTION}, "source": "SpanAttribute"})

    sql, params = build_timeseries_query(spec)

    # Attribute keys are data, not identifiers
    assert INJECTION not in sql
    assert params == {"attribute_key": INJECTION}
    assert "numeric_pattern" not in sql


@pytest.mark.parametrize(
    "fields",
    [
        {"filters": [{"column": INJECTION, "value": "x"}]},
        {"group": INJECTION},
        {"aggregate": {"agg_type": {"Sum": INJECTION}}},
        {"filters": [{"column": "", "value": "x"}]},
        {"group": "   "},
        {"filters": [{"column": "started_at", "value": "x"}]},
        {"aggregate": {"agg_type": "Median"}},
        {"aggregate": {"agg_type": "Sum"}},
        {"aggregate": {"agg_type": {"Sum": "duration_ns", "Max": "duration_ns"}}},
        {"aggregate": {"agg_type": "Count", "source": "Resource"}},
        {"aggregate": {"agg_type": {"Max": ""}, "source": "SpanAttribute"}},
        {"time_bin": {"bin": "fortnight", "value": 1}},
        {"time_bin": {"bin": "minute", "value": 0}},
    ],
)
def test_invalid_specs_are_rejected(fields):
    with pytest.raises(InvalidQuery):
        build_timeseries_query(_spec(**fields))


def test_malformed_payload_is_invalid_query():
    with pytest.raises(InvalidQuery):
        parse_query_spec({"aggregate": 5})
    with pytest.raises(InvalidQuery):
        parse_query_spec(["not", "an", "object"])


def test_injection_never_reaches_the_connection():
    conn = MagicMock()

    with pytest.raises(InvalidQuery):
        run_timeseries_query(conn, _spec(filters=[{"column": INJECTION, "value": "1"}]))

    conn.execute.assert_not_called()


def test_run_maps_rows_to_values():
    end_time = datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc)
    conn = MagicMock()
    conn.execute.return_value.fetchall.return_value = [
        SimpleNamespace(end_time=end_time, value=3, group_value="checkout"),
    ]

    values = run_timeseries_query(conn, _spec(group="service_name"))

    assert len(values) == 1
    assert values[0].end_time == end_time
    assert values[0].value == 3.0
    assert values[0].group == "checkout"


def test_run_without_group_reports_no_group():
    conn = MagicMock()
    conn.execute.return_value.fetchall.return_value = [
        SimpleNamespace(end_time=datetime(2024, 1, 1, tzinfo=timezone.utc), value=0.0, group_value=None),
    ]

    values = run_timeseries_query(conn, QuerySpec())

    assert values[0].group is None


def test_run_wraps_database_errors():
    conn = MagicMock()
    conn.execute.side_effect = SQLAlchemyError("relation does not exist")

    with pytest.raises(StorageError):
        run_timeseries_query(conn, QuerySpec())


def test_integral_float_filter_matches_integer_text():
    spec = _spec(filters=[{"column": "status_code", "value": 2.0}, {"column": "duration_ns", "value": 1.5}])

    _, params = build_timeseries_query(spec)

    assert params == {"filter_0": "2", "filter_1": "1.5"}


@pytest.mark.parametrize("text", ["10", " -3.25 ", ".5", "7.", "1e10", "+2E-05", "1" * 100])
def test_numeric_pattern_accepts_castable_text(text):
    assert re.match(NUMERIC_VALUE_PATTERN, text)


@pytest.mark.parametrize("text", ["n/a", "", "1e400", "1e-400", "1" * 400, "0." + "0" * 400 + "1", "0x1f", "NaN"])
def test_numeric_pattern_rejects_text_outside_float8(text):
    assert re.match(NUMERIC_VALUE_PATTERN, text) is None
