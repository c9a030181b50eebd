from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.core.errors import NotFoundError, ValidationError

log = logging.getLogger(__name__)


class ApiError(Exception):
    """An error that maps directly onto an `{"error": ...}` JSON response."""

    def __init__(self, status_code: int, error: str, *, details: Optional[str] = None, **extra: Any):
        super().__init__(error)
        self.status_code = int(status_code)
        self.error = error
        self.details = details
        self.extra = extra


def error_response(status_code: int, error: str, *, details: Optional[str] = None, **extra: Any) -> JSONResponse:
    content: dict[str, Any] = {"error": error}
    if details:
        content["details"] = details
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(_request: Request, exc: ApiError) -> JSONResponse:
        return error_response(exc.status_code, exc.error, details=exc.details, **exc.extra)

    @app.exception_handler(ValidationError)
    async def _validation(_request: Request, exc: ValidationError) -> JSONResponse:
        return error_response(400, str(exc))

    @app.exception_handler(NotFoundError)
    async def _not_found(_request: Request, exc: NotFoundError) -> JSONResponse:
        return error_response(404, str(exc))
