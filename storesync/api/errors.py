from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from storesync.kernel.errors import StoreSyncError

logger = structlog.get_logger()


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as `{"detail", "code"}` with a stable code."""

    @app.exception_handler(StoreSyncError)
    async def _storesync_error_handler(request: Request, exc: StoreSyncError) -> Response:
        return JSONResponse(status_code=exc.status_code, content=exc.to_public_dict())

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException) -> Response:
        payload: dict[str, Any] = {
            "detail": exc.detail,
            "code": f"http.{exc.status_code}",
        }
        headers = dict(exc.headers or {})
        return JSONResponse(status_code=int(exc.status_code), content=payload, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        payload: dict[str, Any] = {
            "detail": exc.errors(),
            "code": "http.validation_error",
        }
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
        logger.exception("Unhandled exception", path=request.url.path, error=str(exc))
        payload: dict[str, Any] = {
            "detail": "Internal Server Error",
            "code": "internal.unhandled",
        }
        return JSONResponse(status_code=500, content=payload)
