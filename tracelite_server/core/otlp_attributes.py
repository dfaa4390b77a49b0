"""Convert OTLP AnyValue unions into display strings for storage."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from opentelemetry.proto.common.v1.common_pb2 import AnyValue, KeyValue


def any_value_to_string(value: Optional[AnyValue]) -> str:
    """
    Render an OTLP AnyValue as a single string.

    Strings pass through, scalars use their canonical text form, bytes become
    lowercase hex, arrays render as ``[a, b]`` and kvlists as ``{k1:v1, k2:v2}``
    in input order. Unset values render as the empty string; this never raises.

    Args:
        value: OTLP AnyValue message (or None)

    Returns:
        String form of the value
    """
    if value is None:
        return ""

    which = value.WhichOneof("value")

    if which == "string_value":
        return value.string_value
    elif which == "bool_value":
        return "true" if value.bool_value else "false"
    elif which == "int_value":
        return str(value.int_value)
    elif which == "double_value":
        return _format_double(value.double_value)
    elif which == "array_value":
        items = [any_value_to_string(v) for v in value.array_value.values]
        return "[" + ", ".join(items) + "]"
    elif which == "kvlist_value":
        pairs = [f"{kv.key}:{any_value_to_string(kv.value)}" for kv in value.kvlist_value.values]
        return "{" + ", ".join(pairs) + "}"
    elif which == "bytes_value":
        return value.bytes_value.hex()
    else:
        return ""


def _format_double(number: float) -> str:
    """
    Shortest round-trip digits in plain positional notation.

    No exponent form and no trailing ".0": 3.0 -> "3", 1e20 ->
    "100000000000000000000", 1e-7 -> "0.0000001".
    """
    if number != number:
        return "NaN"
    if number in (float("inf"), float("-inf")):
        return "inf" if number > 0 else "-inf"
    text = format(Decimal(repr(number)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def attributes_to_pairs(attributes: list[KeyValue]) -> list[tuple[str, str]]:
    """Coerce an OTLP attribute list into (key, value) pairs, keeping duplicates and order."""
    return [(kv.key, any_value_to_string(kv.value)) for kv in attributes]


def find_string_attribute(attributes: list[KeyValue], key: str) -> Optional[str]:
    """Return the first string-typed value stored under ``key``, if any."""
    for kv in attributes:
        if kv.key == key and kv.value.WhichOneof("value") == "string_value":
            return kv.value.string_value
    return None
