"""Translate core exceptions into HTTP errors."""

from fastapi import HTTPException

from tracelite_server.core.exceptions import (
    DecodeError,
    InvalidIdentifier,
    InvalidQuery,
    NotFound,
    StorageError,
    TraceliteError,
    UnsupportedMediaType,
)

STATUS_BY_ERROR: dict[type[TraceliteError], int] = {
    UnsupportedMediaType: 415,
    DecodeError: 400,
    InvalidIdentifier: 400,
    InvalidQuery: 400,
    NotFound: 404,
    StorageError: 500,
}


def to_http_exception(error: TraceliteError) -> HTTPException:
    """Map a core error onto its status code; storage details stay in the server log."""
    status_code = 500
    for error_type, code in STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            status_code = code
            break

    if status_code >= 500:
        return HTTPException(status_code=status_code, detail="Internal storage error")
    return HTTPException(status_code=status_code, detail=str(error))
