"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response

from ispbot.bot.service import BotService, build_service
from ispbot.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from ispbot.observability.logging import get_logger

from .routers import public
from .routes import webhooks_whatsapp

logger = get_logger(__name__)


def create_app(service: BotService | None = None) -> FastAPI:
    """Create the FastAPI app.

    Args:
        service: Prebuilt bot service (tests inject fakes). If None, one is
            built from the environment at startup.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        bot = service if service is not None else build_service()
        app.state.bot = bot
        bot.sweeper.start()
        logger.info("bot service started")
        try:
            yield
        finally:
            await bot.sweeper.stop()
            await bot.pipeline.drain()
            logger.info("bot service stopped")

    app = FastAPI(
        title="ISP Bot",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
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
    app.include_router(webhooks_whatsapp.router)

    return app
