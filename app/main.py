"""
FastAPI application entrypoint for the analytics connector.
"""

from __future__ import annotations

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.clients.kv_store import KVNotConfiguredError, KVStoreError
from app.core.config import get_settings
from app.core.logging import configure_logging

logger = logging.getLogger(__name__)


async def _store_unavailable(request: Request, exc: KVStoreError) -> JSONResponse:
    """Every durable read or write goes through the store; failing it fails closed."""
    if isinstance(exc, KVNotConfiguredError):
        logger.error("Key-value store is not configured: %s", exc)
    else:
        logger.error("Key-value store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=HTTPStatus.SERVICE_UNAVAILABLE,
        content={"ok": False, "code": "STORAGE_UNAVAILABLE", "error": "Storage unavailable."},
    )


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        "Starting analytics connector (env=%s, kv_backend=%s)",
        settings.environment,
        settings.kv.backend,
    )

    app = FastAPI(
        title="GA4 Analytics Connector",
        version="0.1.0",
        description="Google Analytics OAuth connector with plan-aware usage limits.",
    )
    app.add_exception_handler(KVStoreError, _store_unavailable)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
