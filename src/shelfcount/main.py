"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shelfcount.api.routes import router
from shelfcount.config import get_settings
from shelfcount.ledger import InventoryLedger
from shelfcount.vision.device import UploadedFrameDevice
from shelfcount.vision.pool import ModelCallPool
from shelfcount.vision.registry import SessionRegistry
from shelfcount.vision.transport import GeminiTransport

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ShelfCount (model=%s, reply_format=%s, max_concurrent=%s, session_ttl=%ss)",
        settings.gemini_model,
        settings.reply_format,
        settings.max_concurrent,
        settings.session_ttl,
    )
    if not settings.gemini_api_key:
        logger.warning("SHELFCOUNT_GEMINI_API_KEY is not set; every capture will fail")

    transport = GeminiTransport(settings)
    pool = ModelCallPool(settings)
    app.state.transport = transport
    app.state.pool = pool
    app.state.ledger = InventoryLedger()
    app.state.registry = SessionRegistry(settings, transport, UploadedFrameDevice, pool=pool)

    logger.info("ShelfCount ready")
    yield

    logger.info("Shutting down ShelfCount")
    app.state.registry.shutdown()
    await transport.aclose()
    logger.info("ShelfCount shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ShelfCount",
        description="Photograph a shelf or bin and count the expected item with a vision model",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("shelfcount.main:app", host=settings.host, port=settings.port)
