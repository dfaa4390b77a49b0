"""Parse OTLP export requests (protobuf or OTLP-JSON) into proto messages."""

from __future__ import annotations

import base64
import gzip
import json
import logging
import zlib
from typing import Any, TypeVar

from google.protobuf.json_format import ParseDict, ParseError
from google.protobuf.message import DecodeError as ProtobufDecodeError
from google.protobuf.message import Message
from opentelemetry.proto.collector.logs.v1.logs_service_pb2 import ExportLogsServiceRequest
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import ExportTraceServiceRequest

from tracelite_server.core.exceptions import DecodeError, UnsupportedMediaType

logger = logging.getLogger(__name__)

PROTOBUF_CONTENT_TYPES = ("application/x-protobuf", "application/protobuf")
JSON_CONTENT_TYPES = ("application/json",)

# OTLP/JSON carries these as hex; the protobuf JSON mapping expects base64
_HEX_ID_FIELDS = ("traceId", "spanId", "parentSpanId")

RequestT = TypeVar("RequestT", bound=Message)


def negotiate_content_type(content_type: str | None) -> str:
    """
    Map a Content-Type header onto a wire format.

    Args:
        content_type: Raw header value (parameters such as charset are ignored)

    Returns:
        "protobuf" or "json"

    Raises:
        UnsupportedMediaType: If the content type is not an OTLP encoding
    """
    media_type = (content_type or "").split(";", 1)[0].strip().lower()

    if media_type in PROTOBUF_CONTENT_TYPES:
        return "protobuf"
    if media_type in JSON_CONTENT_TYPES:
        return "json"

    raise UnsupportedMediaType(
        f"Unsupported Content-Type: {content_type or '<missing>'}. "
        f"Expected application/x-protobuf, application/protobuf or application/json"
    )


def decompress_body(data: bytes, content_encoding: str | None) -> bytes:
    """
    Undo the Content-Encoding applied by the exporter.

    OTLP/HTTP exporters send either an identity or a gzip body.

    Raises:
        UnsupportedMediaType: If the encoding is neither identity nor gzip
        DecodeError: If a gzip body is corrupt
    """
    encoding = (content_encoding or "identity").strip().lower()

    if encoding in ("", "identity"):
        return data
    if encoding != "gzip":
        raise UnsupportedMediaType(f"Unsupported Content-Encoding: {content_encoding}")

    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        logger.warning(f"Failed to decompress gzip body: {e}")
        raise DecodeError(f"Invalid gzip body: {e}") from e


def parse_trace_request(data: bytes, content_type: str | None) -> ExportTraceServiceRequest:
    """
    Parse an OTLP trace export request.

    Args:
        data: Raw request body
        content_type: Declared Content-Type of the body

    Returns:
        ExportTraceServiceRequest message

    Raises:
        UnsupportedMediaType: If the content type is not supported
        DecodeError: If the body does not parse
    """
    return _parse_request(data, content_type, ExportTraceServiceRequest)


def parse_logs_request(data: bytes, content_type: str | None) -> ExportLogsServiceRequest:
    """
    Parse an OTLP logs export request.

    Args:
        data: Raw request body
        content_type: Declared Content-Type of the body

    Returns:
        ExportLogsServiceRequest message

    Raises:
        UnsupportedMediaType: If the content type is not supported
        DecodeError: If the body does not parse
    """
    return _parse_request(data, content_type, ExportLogsServiceRequest)


def _parse_request(data: bytes, content_type: str | None, message_cls: type[RequestT]) -> RequestT:
    wire_format = negotiate_content_type(content_type)

    if wire_format == "protobuf":
        message = parse_otlp_protobuf(data, message_cls)
    else:
        message = parse_otlp_json(data, message_cls)

    logger.debug(f"Parsed {message_cls.__name__} from {wire_format} ({len(data)} bytes)")
    return message


def parse_otlp_protobuf(data: bytes, message_cls: type[RequestT]) -> RequestT:
    """Parse binary protobuf bytes into ``message_cls``."""
    message = message_cls()
    try:
        message.ParseFromString(data)
    except (ProtobufDecodeError, ValueError) as e:
        logger.warning(f"Failed to parse OTLP protobuf: {e}")
        raise DecodeError(f"Invalid OTLP protobuf data: {e}") from e
    return message


def parse_otlp_json(data: bytes, message_cls: type[RequestT]) -> RequestT:
    """Parse an OTLP-JSON document into ``message_cls``."""
    try:
        document = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to parse OTLP JSON: {e}")
        raise DecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(document, dict):
        raise DecodeError("OTLP JSON payload must be an object")

    message = message_cls()
    try:
        ParseDict(_hex_ids_to_base64(document), message, ignore_unknown_fields=True)
    except (ParseError, ValueError, TypeError) as e:
        logger.warning(f"OTLP JSON does not match {message_cls.__name__}: {e}")
        raise DecodeError(f"Invalid OTLP JSON data: {e}") from e
    return message


def _hex_ids_to_base64(node: Any) -> Any:
    """Recursively rewrite hex-encoded id fields into base64 for ParseDict."""
    if isinstance(node, list):
        return [_hex_ids_to_base64(item) for item in node]
    if not isinstance(node, dict):
        return node

    converted: dict[str, Any] = {}
    for key, value in node.items():
        if key in _HEX_ID_FIELDS and isinstance(value, str):
            converted[key] = _hex_to_base64(key, value)
        else:
            converted[key] = _hex_ids_to_base64(value)
    return converted


def _hex_to_base64(field: str, value: str) -> str:
    try:
        raw = bytes.fromhex(value)
    except ValueError as e:
        raise DecodeError(f"Invalid hex in {field}: {value!r}") from e
    return base64.b64encode(raw).decode("ascii")

