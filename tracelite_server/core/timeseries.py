"""Time-bucketed aggregate queries over spans.

The query DSL is compiled into one parameterized SQL statement. Column names
and the bucket width are interpolated into the SQL text, so every identifier
is checked against a fixed allow-list before any SQL is assembled; literal
values (filter values, attribute keys) are always bound parameters.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from tracelite_server.core.exceptions import InvalidQuery, StorageError

logger = logging.getLogger(__name__)

# Span columns that may appear as aggregate targets, filters or group keys
SPAN_COLUMNS = frozenset(
    {
        "span_id",
        "trace_id",
        "parent_span_id",
        "operation_name",
        "duration_ns",
        "status_code",
        "kind",
        "service_name",
        "instrumentation_library",
    }
)
NUMERIC_SPAN_COLUMNS = frozenset({"duration_ns", "status_code"})

# API name -> span table column
_COLUMN_SQL = {name: name for name in SPAN_COLUMNS}
_COLUMN_SQL["span_id"] = "id"

AGGREGATE_FUNCTIONS = {
    "count": "COUNT",
    "sum": "SUM",
    "avg": "AVG",
    "min": "MIN",
    "max": "MAX",
}

SOURCE_SPAN_COLUMN = "SpanColumn"
SOURCE_SPAN_ATTRIBUTE = "SpanAttribute"

BIN_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
}

# Attribute values are stored as text; only these are cast for numeric aggregates.
# Digit counts and the exponent are bounded so every match fits a float8.
NUMERIC_VALUE_PATTERN = (
    r"^\s*[-+]?([0-9]{1,100}(\.[0-9]{0,100})?|\.[0-9]{1,100})([eE][-+]?[0-9]{1,2})?\s*$"
)


class TimeBin(BaseModel):
    """Bucket width: unit plus positive multiplier."""

    bin: str = "minute"
    value: int = 1

    @field_validator("bin", mode="before")
    @classmethod
    def _normalize_bin(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    def width_seconds(self) -> int:
        if self.bin not in BIN_SECONDS:
            raise InvalidQuery(f"Unknown time bin {self.bin!r}; expected one of {sorted(BIN_SECONDS)}")
        if self.value < 1:
            raise InvalidQuery("Time bin value must be a positive integer")
        return BIN_SECONDS[self.bin] * self.value


class Filter(BaseModel):
    """Equality filter on a whitelisted span column."""

    column: str
    value: Union[str, int, float]


class Aggregate(BaseModel):
    """
    Aggregate function and its target.

    ``agg_type`` is either "Count" or a single-entry mapping such as
    ``{"Sum": "duration_ns"}``; ``source`` says whether the target names a
    span column or a span attribute key.
    """

    agg_type: Union[str, dict[str, str]] = "Count"
    source: str = SOURCE_SPAN_COLUMN

    def resolve(self) -> tuple[str, Optional[str]]:
        """Return (function, target) with the function lower-cased."""
        if isinstance(self.agg_type, str):
            function, target = self.agg_type.strip().lower(), None
        else:
            if len(self.agg_type) != 1:
                raise InvalidQuery("Aggregate must name exactly one function")
            (name, target), = self.agg_type.items()
            function = name.strip().lower()

        if function not in AGGREGATE_FUNCTIONS:
            raise InvalidQuery(f"Unknown aggregate function {function!r}")
        if function != "count" and target is None:
            raise InvalidQuery(f"Aggregate {function!r} requires a target column or attribute")
        return function, target


class QuerySpec(BaseModel):
    aggregate: Aggregate = Field(default_factory=Aggregate)
    filters: list[Filter] = Field(default_factory=list)
    group: Optional[str] = None
    time_bin: Optional[TimeBin] = None


class TimeSeriesValue(BaseModel):
    end_time: datetime = Field(..., description="Closing boundary of the bucket")
    value: float
    group: Optional[str] = None


def parse_query_spec(payload: Any) -> QuerySpec:
    """Validate a raw payload into a QuerySpec, reporting problems as InvalidQuery."""
    try:
        return QuerySpec.model_validate(payload)
    except ValidationError as e:
        raise InvalidQuery(f"Malformed query specification: {e.error_count()} error(s)") from e


def _column_sql(name: Optional[str], role: str) -> str:
    """Map an allow-listed column name to its SQL identifier or reject it."""
    if name is None or not name.strip():
        raise InvalidQuery(f"Empty {role} column")
    if name not in SPAN_COLUMNS:
        raise InvalidQuery(f"Column {name!r} is not allowed as {role}")
    return _COLUMN_SQL[name]


def _filter_text(value: Union[str, int, float]) -> str:
    # Integral floats compare like ints: 2.0 matches a stored "2"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_timeseries_query(spec: QuerySpec) -> tuple[str, dict[str, Any]]:
    """
    Compile a QuerySpec into SQL text plus bound parameters.

    Every identifier is validated before any SQL is built.

    Returns:
        (sql, params) suitable for ``conn.execute(text(sql), params)``

    Raises:
        InvalidQuery: If the specification references a non-whitelisted
            column or is otherwise malformed
    """
    function, target = spec.aggregate.resolve()
    source = spec.aggregate.source
    if source not in (SOURCE_SPAN_COLUMN, SOURCE_SPAN_ATTRIBUTE):
        raise InvalidQuery(f"Unknown aggregate source {source!r}")

    width = (spec.time_bin or TimeBin()).width_seconds()
    filter_columns = [_column_sql(f.column, "filter") for f in spec.filters]
    group_column = _column_sql(spec.group, "group") if spec.group is not None else None

    params: dict[str, Any] = {}
    joins: list[str] = []
    conditions: list[str] = []
    sql_function = AGGREGATE_FUNCTIONS[function]

    if target is None:
        value_expr = "COUNT(*)"
    elif source == SOURCE_SPAN_COLUMN:
        column = _column_sql(target, "aggregate target")
        if function != "count" and target not in NUMERIC_SPAN_COLUMNS:
            raise InvalidQuery(f"Column {target!r} is not numeric; cannot {function} it")
        value_expr = f"{sql_function}(s.{column})"
    else:
        if not target.strip():
            raise InvalidQuery("Empty aggregate attribute key")
        joins.append("JOIN span_attribute a ON a.span_id = s.id AND a.key = :attribute_key")
        params["attribute_key"] = target
        if function == "count":
            value_expr = "COUNT(a.value)"
        else:
            conditions.append("a.value ~ :numeric_pattern")
            params["numeric_pattern"] = NUMERIC_VALUE_PATTERN
            value_expr = (
                f"{sql_function}(CASE WHEN a.value ~ :numeric_pattern "
                "THEN CAST(a.value AS DOUBLE PRECISION) END)"
            )

    for index, (column, spec_filter) in enumerate(zip(filter_columns, spec.filters)):
        name = f"filter_{index}"
        conditions.append(f"CAST(s.{column} AS TEXT) = :{name}")
        params[name] = _filter_text(spec_filter.value)

    # Buckets anchor at the Unix epoch so edges line up across queries
    bucket_end = (
        f"to_timestamp(FLOOR(EXTRACT(EPOCH FROM s.started_at) / {width:d}) * {width:d} + {width:d})"
    )
    select_items = [
        f"{bucket_end} AS end_time",
        f"COALESCE(CAST({value_expr} AS DOUBLE PRECISION), 0.0) AS value",
    ]
    group_by = ["1"]
    if group_column is not None:
        select_items.append(f"CAST(s.{group_column} AS TEXT) AS group_value")
        group_by.append("3")

    sql_parts = [
        "SELECT " + ", ".join(select_items),
        "FROM span s",
        *joins,
    ]
    if conditions:
        sql_parts.append("WHERE " + " AND ".join(conditions))
    sql_parts.append("GROUP BY " + ", ".join(group_by))
    sql_parts.append("ORDER BY " + ", ".join(group_by))

    return "\n".join(sql_parts), params


def run_timeseries_query(conn: Connection, spec: QuerySpec) -> list[TimeSeriesValue]:
    """
    Build and execute a time-series query.

    Raises:
        InvalidQuery: Before touching the database, if the query is malformed
        StorageError: If the statement fails
    """
    sql, params = build_timeseries_query(spec)
    grouped = spec.group is not None

    try:
        rows = conn.execute(text(sql), params).fetchall()
    except SQLAlchemyError as e:
        logger.error(f"Time-series query failed: {e}", exc_info=True)
        raise StorageError("Time-series query failed") from e

    logger.debug(f"Time-series query returned {len(rows)} bucket(s)")
    return [
        TimeSeriesValue(
            end_time=row.end_time,
            value=float(row.value),
            group=row.group_value if grouped else None,
        )
        for row in rows
    ]
