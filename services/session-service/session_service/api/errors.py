"""Translate session-layer failures into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..domain.errors import SessionError, StoreUnavailableError, TooManyRequestsError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for typed session failures and store outages."""

    @app.exception_handler(SessionError)
    async def handle_session_error(request: Request, exc: SessionError) -> JSONResponse:
        headers = exc.headers if isinstance(exc, TooManyRequestsError) else None
        logger.info(
            "request rejected method=%s path=%s status=%d code=%s",
            request.method,
            request.url.path,
            exc.status_code,
            exc.error_code,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.error_code},
            headers=headers,
        )

    @app.exception_handler(StoreUnavailableError)
    async def handle_store_unavailable(request: Request, exc: StoreUnavailableError) -> JSONResponse:
        logger.error("store unavailable method=%s path=%s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "service temporarily unavailable", "code": "store_unavailable"},
        )
