"""Error types for tracklinks.

The enrichment taxonomy is raised by integrations and services and handled
inside the subsystem; only ``CatalogUnavailableError`` escapes to callers.
``AppError`` subclasses are the failures the HTTP API reports, each carrying
its error code and status, and render as
``{"ok": false, "error": {"code", "message", "meta"?}}``.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar
from uuid import uuid4

from fastapi.responses import JSONResponse

from tracklinks.logging import get_logger
from tracklinks.logging_events import log_event

if TYPE_CHECKING:
    from tracklinks.services.task_registry import ResolutionTask

logger = get_logger(__name__)


# Enrichment taxonomy ------------------------------------------------------


class ExternalServiceError(RuntimeError):
    """Base class for failures talking to the link service."""

    retryable = False
    retry_after_ms: int | None = None

    def __init__(
        self,
        service: str,
        message: str,
        *,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.cause = cause


class TransientExternalError(ExternalServiceError):
    """Timeouts, 5xx and 429 responses; retried with backoff by the caller.

    ``retry_after_ms`` carries the service's own retry hint when one was sent.
    """

    retryable = True

    def __init__(
        self,
        service: str,
        message: str,
        *,
        status_code: int | None = None,
        retry_after_ms: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(service, message, status_code=status_code, cause=cause)
        self.retry_after_ms = retry_after_ms


class PermanentExternalError(ExternalServiceError):
    """4xx responses other than 429 and undecodable payloads."""


class ProviderError(RuntimeError):
    """Raised when the embedding provider could not produce a vector."""

    def __init__(self, provider: str, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.cause = cause


class CandidateValidationError(ValueError):
    """Raised for a malformed resolution candidate; only that item is skipped."""

    def __init__(self, track_id: Any, message: str) -> None:
        super().__init__(message)
        self.track_id = track_id


class ConcurrencyConflict(RuntimeError):
    """Raised internally when a batch is submitted while another is active."""

    def __init__(self, existing: "ResolutionTask") -> None:
        super().__init__(f"Resolution task {existing.id} is already {existing.status.value}")
        self.existing = existing


class CatalogUnavailableError(RuntimeError):
    """The catalog store cannot be read or written; fatal to the subsystem."""

    def __init__(self, operation: str, *, cause: Exception | None = None) -> None:
        super().__init__(f"Catalog store unavailable during {operation}")
        self.operation = operation


# HTTP errors --------------------------------------------------------------


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    DEPENDENCY_ERROR = "DEPENDENCY_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(Exception):
    """Base class for errors reported through the HTTP API.

    Subclasses set ``code``, ``http_status`` and ``default_message``;
    constructor arguments override them per instance.
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    http_status: int = 500
    default_message: ClassVar[str] = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | None = None,
        http_status: int | None = None,
        meta: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.meta = dict(meta) if meta else None
        self.headers = dict(headers) if headers else {}

    def envelope(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.meta:
            error["meta"] = self.meta
        return {"ok": False, "error": error}

    def as_response(self, *, request_path: str, method: str) -> JSONResponse:
        return to_response(self, request_path=request_path, method=method)


class ValidationAppError(AppError):
    code = ErrorCode.VALIDATION_ERROR
    http_status = 400
    default_message = "Request validation failed."


class NotFoundError(AppError):
    code = ErrorCode.NOT_FOUND
    http_status = 404
    default_message = "Resource not found."


class DependencyError(AppError):
    """The catalog or an upstream service is unavailable."""

    code = ErrorCode.DEPENDENCY_ERROR
    http_status = 503
    default_message = "Upstream service is unavailable."


class InternalServerError(AppError):
    pass


# Helpers ------------------------------------------------------------------


def parse_retry_after(value: str | None) -> int | None:
    """Convert a ``Retry-After`` header (seconds or HTTP date) to milliseconds."""

    text = str(value).strip() if value is not None else ""
    if not text:
        return None
    try:
        return max(0, int(float(text) * 1000))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0, int((when - datetime.now(UTC)).total_seconds() * 1000))


def to_response(error: AppError, *, request_path: str, method: str) -> JSONResponse:
    """Render ``error`` as a JSON response tagged with a fresh ``X-Debug-Id``."""

    debug_id = uuid4().hex
    response = JSONResponse(status_code=error.http_status, content=error.envelope())
    response.headers.update(error.headers)
    response.headers["X-Debug-Id"] = debug_id

    if error.http_status in {429, 502, 503, 504}:
        level = "warning"
    elif error.http_status >= 500:
        level = "error"
    else:
        level = "info"
    log_event(
        logger,
        "api.error",
        level=level,
        component="api",
        code=error.code.value,
        status=error.http_status,
        path=request_path,
        method=method,
        debug_id=debug_id,
    )
    return response


__all__ = [
    "AppError",
    "CandidateValidationError",
    "CatalogUnavailableError",
    "ConcurrencyConflict",
    "DependencyError",
    "ErrorCode",
    "ExternalServiceError",
    "InternalServerError",
    "NotFoundError",
    "PermanentExternalError",
    "ProviderError",
    "TransientExternalError",
    "ValidationAppError",
    "parse_retry_after",
    "to_response",
]
