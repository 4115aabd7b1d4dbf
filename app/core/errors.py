"""Structured error responses: consistent JSON envelope for all errors.

Every error body carries ``success: false`` and a human-readable ``message``.
A feature-disabled response is a distinct outcome: the request was valid and
authorized, but the target configuration turns the feature off.
"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("app.errors")


class FeatureDisabledError(HTTPException):
    """The requested persona feature is switched off in its configuration."""

    def __init__(self, feature: str, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
        self.feature = feature


def _envelope(request: Request, status_code: int, message, **extra) -> dict:
    return {
        "success": False,
        "error": True,
        "status_code": status_code,
        "message": message,
        "detail": message,
        "request_id": getattr(request.state, "request_id", None),
        **extra,
    }


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(FeatureDisabledError)
    async def feature_disabled_handler(request: Request, exc: FeatureDisabledError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_envelope(
                request,
                exc.status_code,
                exc.detail,
                feature_disabled=True,
                feature=exc.feature,
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_envelope(request, exc.status_code, exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=_envelope(
                request,
                422,
                "Validation error",
                errors=jsonable_encoder(exc.errors()),
            ),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled error request_id=%s path=%s",
            getattr(request.state, "request_id", "-"),
            request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_envelope(request, 500, "Internal server error"),
        )
