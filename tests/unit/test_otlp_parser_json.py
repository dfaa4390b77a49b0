"""Tests for OTLP/JSON decoding.

OTLP/JSON uses lowerCamelCase field names, hex-encoded trace/span ids and
64-bit integers as strings. Decoded messages must be identical in shape to
their protobuf counterparts.
"""

from __future__ import annotations

import json

import pytest

from tracelite_server.core.exceptions import DecodeError
from tracelite_server.core.otlp_parser import parse_logs_request, parse_trace_request

TRACE_ID_HEX = "5b8efff798038103d269b633813fc60c"
SPAN_ID_HEX = "eee19b7ec3c1b174"


def _trace_payload(**span_overrides) -> dict:
    span = {
        "traceId": TRACE_ID_HEX,
        "spanId": SPAN_ID_HEX,
        "parentSpanId": "",
        "name": "GET /orders",
        "kind": 2,
        "startTimeUnixNano": "1544712660000000000",
        "endTimeUnixNano": "1544712661000000000",
        "attributes": [{"key": "http.status_code", "value": {"intValue": "200"}}],
        "status": {"code": 1},
    }
    span.update(span_overrides)
    return {
        "resourceSpans": [
            {
                "resource": {
                    "attributes": [{"key": "service.name", "value": {"stringValue": "orders"}}]
                },
                "scopeSpans": [{"scope": {"name": "io.opentelemetry.http"}, "spans": [span]}],
            }
        ]
    }


def _encode(payload) -> bytes:
    return json.dumps(payload).encode()


def test_parse_json_converts_hex_ids():
    out = parse_trace_request(_encode(_trace_payload()), "application/json")

    span = out.resource_spans[0].scope_spans[0].spans[0]
    assert span.trace_id.hex() == TRACE_ID_HEX
    assert span.span_id.hex() == SPAN_ID_HEX
    assert span.parent_span_id == b""
    assert span.kind == 2
    assert span.start_time_unix_nano == 1544712660000000000
    assert span.attributes[0].value.int_value == 200
    assert span.status.code == 1


def test_parse_json_ignores_unknown_fields():
    payload = _trace_payload(droppedAttributesCount=0, somethingNew={"x": 1})

    out = parse_trace_request(_encode(payload), "application/json")

    assert out.resource_spans[0].scope_spans[0].spans[0].name == "GET /orders"


def test_parse_json_logs_request():
    payload = {
        "resourceLogs": [
            {
                "scopeLogs": [
                    {
                        "logRecords": [
                            {
                                "timeUnixNano": "1700000000000000000",
                                "severityNumber": 9,
                                "severityText": "INFO",
                                "body": {"stringValue": "ready"},
                                "traceId": TRACE_ID_HEX,
                                "spanId": SPAN_ID_HEX,
                            }
                        ]
                    }
                ]
            }
        ]
    }

    out = parse_logs_request(_encode(payload), "application/json")

    record = out.resource_logs[0].scope_logs[0].log_records[0]
    assert record.body.string_value == "ready"
    assert record.trace_id.hex() == TRACE_ID_HEX


def test_invalid_json_raises_decode_error():
    with pytest.raises(DecodeError):
        parse_trace_request(b"{ this is not valid json }", "application/json")


def test_non_object_json_raises_decode_error():
    with pytest.raises(DecodeError):
        parse_trace_request(b"[1, 2, 3]", "application/json")


def test_schema_mismatch_raises_decode_error():
    with pytest.raises(DecodeError):
        parse_trace_request(_encode({"resourceSpans": "nope"}), "application/json")


def test_invalid_hex_id_raises_decode_error():
    with pytest.raises(DecodeError):
        parse_trace_request(_encode(_trace_payload(traceId="zz-not-hex")), "application/json")
