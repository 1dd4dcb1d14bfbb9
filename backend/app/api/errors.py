"""Exception handlers producing the ``{success: false, message}`` envelope."""

from collections import defaultdict
from collections.abc import Sequence
from typing import Any

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import ConflictError, NotFoundError, StorageError

logger = structlog.get_logger(__name__)

# Prefixes pydantic adds in front of messages raised from validators
_PYDANTIC_MESSAGE_PREFIXES = ("Value error, ", "Assertion failed, ")


def _clean_message(message: str) -> str:
    for prefix in _PYDANTIC_MESSAGE_PREFIXES:
        if message.startswith(prefix):
            return message.removeprefix(prefix)
    return message


def format_validation_errors(errors: Sequence[Any]) -> dict[str, list[str]]:
    """
    Group pydantic errors by field name.

    ``("body", "email")`` becomes ``"email"`` and ``("query", "page")``
    becomes ``"page"``. Single-part locations are used as they are, so
    ``("body",)`` stays ``"body"`` and a model's own ``("email",)`` stays
    ``"email"``.

    Args:
        errors: Errors from ``RequestValidationError.errors()`` or ``ValidationError.errors()``

    Returns:
        Mapping of field name to human-readable messages
    """
    grouped: dict[str, list[str]] = defaultdict(list)
    for error in errors:
        loc = [str(part) for part in error.get("loc", ())]
        field = ".".join(loc[1:]) if len(loc) > 1 else (loc[0] if loc else "body")
        grouped[field].append(_clean_message(error.get("msg", "Invalid value")))
    return dict(grouped)


def _error(status_code: int, message: str | dict[str, list[str]]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 with per-field messages. Nothing reached the database."""
    fields = format_validation_errors(exc.errors())
    logger.info("request_validation_failed", path=request.url.path, fields=sorted(fields))
    return _error(422, fields)


async def conflict_error_handler(request: Request, exc: ConflictError) -> JSONResponse:
    """409 naming the duplicated field."""
    return _error(status.HTTP_409_CONFLICT, exc.message)


async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """404 for unknown user ids."""
    return _error(status.HTTP_404_NOT_FOUND, exc.message)


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """500 with a generic message. The cause is only logged."""
    logger.error(
        "storage_error",
        operation=exc.operation,
        path=request.url.path,
        exc_info=exc.__cause__ or exc,
    )
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.message)


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """500 for database errors that escaped the service layer."""
    logger.error("unhandled_database_error", path=request.url.path, exc_info=exc)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, StorageError.message)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the error envelope handlers to an application."""
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ConflictError, conflict_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(NotFoundError, not_found_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StorageError, storage_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, database_error_handler)  # type: ignore[arg-type]
