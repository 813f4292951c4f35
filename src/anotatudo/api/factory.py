"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response

from anotatudo.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from anotatudo.observability.logging import get_logger

from .routers import public
from .routes import webhook

logger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    webhook.startup()
    yield
    # In-flight batches finish before the process exits
    webhook.shutdown()
    logger.info("webhook workers drained")


def create_app() -> FastAPI:
    """Create FastAPI app with health and webhook routes.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Anotatudo WhatsApp",
        docs_url=None,
        redoc_url=None,
        lifespan=_lifespan,
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(public.router)
    app.include_router(webhook.router)

    return app
