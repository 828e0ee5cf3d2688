from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.consumption import build_default_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    service = build_default_service()
    logger.info(
        "Consumption service started",
        extra={"strategy": service.config.strategy, "active_assets": len(service.assets.list_active())},
    )
    try:
        yield
    finally:
        service.shutdown()
        build_default_service.cache_clear()
        logger.info("Consumption service stopped")


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Tankwatch",
        description="Fuel tank consumption, days-remaining and refill analysis.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
