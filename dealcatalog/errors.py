from __future__ import annotations

import logging
from enum import Enum
from typing import Any

import httpx
from postgrest.exceptions import APIError

logger = logging.getLogger(__name__)

# Postgres / PostgREST codes the store layer knows how to classify.
FOREIGN_KEY_VIOLATION = "23503"
QUERY_CANCELED = "57014"
NO_ROWS = "PGRST116"


class ErrorKind(str, Enum):
    unauthorized = "unauthorized"
    forbidden = "forbidden"
    validation = "validation"
    not_found = "not_found"
    reference_violation = "reference_violation"
    timeout = "timeout"
    unsupported_media_type = "unsupported_media_type"
    bad_request = "bad_request"
    internal = "internal"


# kind -> (HTTP status, stable error label)
_HTTP_MAPPING: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.unauthorized: (401, "Unauthorized"),
    ErrorKind.forbidden: (403, "Forbidden"),
    ErrorKind.validation: (400, "Validation Error"),
    ErrorKind.bad_request: (400, "Bad Request"),
    ErrorKind.not_found: (404, "Not Found"),
    ErrorKind.reference_violation: (409, "Reference Violation"),
    ErrorKind.unsupported_media_type: (415, "Unsupported Media Type"),
    ErrorKind.internal: (500, "Internal Server Error"),
    ErrorKind.timeout: (504, "Gateway Timeout"),
}


class CatalogError(Exception):
    """An error tagged with the kind the detecting layer assigned to it."""

    def __init__(self, kind: ErrorKind, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        return _HTTP_MAPPING[self.kind][0]

    @property
    def label(self) -> str:
        return _HTTP_MAPPING[self.kind][1]

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.label, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"CatalogError({self.kind.value!r}, {self.message!r})"


def translate_store_error(exc: BaseException) -> CatalogError:
    """Classify an exception raised by the remote store client."""
    if isinstance(exc, CatalogError):
        return exc

    if isinstance(exc, httpx.TimeoutException):
        return CatalogError(ErrorKind.timeout, "The data store did not respond in time.")

    if isinstance(exc, APIError):
        code = str(exc.code or "")
        if code == FOREIGN_KEY_VIOLATION:
            return CatalogError(
                ErrorKind.reference_violation,
                exc.message or "Foreign key constraint violated.",
                details=exc.details,
            )
        if code == QUERY_CANCELED:
            return CatalogError(ErrorKind.timeout, "The data store cancelled the query.")
        if code == NO_ROWS:
            return CatalogError(ErrorKind.not_found, exc.message or "No matching record.")
        logger.error("Unclassified store error code=%s message=%s", code, exc.message)
        return CatalogError(ErrorKind.internal, f"Data store error: {exc.message}")

    logger.error("Unexpected store failure", exc_info=exc)
    return CatalogError(ErrorKind.internal, f"Data store error: {exc}")
