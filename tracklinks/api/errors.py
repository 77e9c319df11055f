"""Exception handlers rendering the canonical error envelope."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tracklinks.errors import (
    AppError,
    CatalogUnavailableError,
    DependencyError,
    InternalServerError,
    ValidationAppError,
)
from tracklinks.logging import get_logger

logger = get_logger(__name__)

_LOCATION_PREFIXES = frozenset({"body", "query", "path", "header", "cookie"})


def _field_name(loc: Any) -> str:
    if isinstance(loc, Sequence) and not isinstance(loc, str):
        parts = [str(part) for part in loc]
    else:
        parts = [str(loc)]
    if parts and parts[0] in _LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(parts) or "?"


def _respond(request: Request, error: AppError) -> JSONResponse:
    return error.as_response(request_path=request.url.path, method=request.method)


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [
        {"name": _field_name(error.get("loc", ())), "message": error.get("msg", "Invalid input.")}
        for error in exc.errors()
    ]
    return _respond(request, ValidationAppError(http_status=422, meta={"fields": fields} if fields else None))


async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    return _respond(request, exc)


async def _handle_catalog_unavailable(request: Request, exc: CatalogUnavailableError) -> JSONResponse:
    return _respond(
        request,
        DependencyError("Track catalog is unavailable.", meta={"operation": exc.operation}),
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _respond(request, InternalServerError())


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(AppError, _handle_app_error)
    app.add_exception_handler(CatalogUnavailableError, _handle_catalog_unavailable)
    app.add_exception_handler(Exception, _handle_unexpected_error)


__all__ = ["setup_exception_handlers"]
