import logging

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chatcore.errors import ChatCoreError, StoreUnavailable

logger = logging.getLogger(__name__)

STORE_RETRY_AFTER_SECONDS = 1


def register_error_handlers(app: FastAPI):
    @app.exception_handler(ChatCoreError)
    async def chatcore_error_handler(request: Request, exc: ChatCoreError):
        headers = None
        if isinstance(exc, StoreUnavailable):
            logger.warning("%s %s: store unavailable", request.method, request.url.path)
            headers = {"Retry-After": str(STORE_RETRY_AFTER_SECONDS)}
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "type": type(exc).__name__},
            headers=headers,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        sentry_sdk.capture_exception(exc)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "type": type(exc).__name__,
            },
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc)},
        )
