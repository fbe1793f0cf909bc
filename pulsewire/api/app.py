"""FastAPI application receiving push deliveries."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..logging_config import setup_logging
from ..telegram.source import TelegramSource
from .webhook import router as webhook_router

logger = logging.getLogger("pulsewire.api")


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Consistent error body for HTTP errors."""
    logger.warning(
        f"HTTP {exc.status_code} on {request.method} {request.url.path}: {exc.detail}"
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.status_code,
                "message": exc.detail,
                "path": str(request.url.path)
            }
        }
    )


def create_app(source: TelegramSource) -> FastAPI:
    """Application factory."""

    setup_logging()
    app = FastAPI(title="pulsewire", docs_url=None, redoc_url=None)
    app.state.telegram_source = source
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.include_router(webhook_router)
    return app
