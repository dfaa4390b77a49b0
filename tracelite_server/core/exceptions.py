"""Exception hierarchy for ingestion, storage and query errors."""

from __future__ import annotations


class TraceliteError(Exception):
    """Base class for all tracelite errors."""


class UnsupportedMediaType(TraceliteError):
    """Ingestion content type is neither OTLP protobuf nor OTLP JSON."""


class DecodeError(TraceliteError):
    """Payload does not parse as the declared OTLP schema."""


class InvalidIdentifier(TraceliteError):
    """Trace/span id of the wrong length, or a timestamp that cannot be represented."""


class StorageError(TraceliteError):
    """A database statement failed while writing an ingestion batch."""


class InvalidQuery(TraceliteError):
    """Query specification references a non-whitelisted column or is malformed."""


class NotFound(TraceliteError):
    """Single-entity lookup by id matched nothing."""
