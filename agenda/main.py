"""FastAPI application factory."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from agenda.api.v1.router import api_router
from agenda.core.config import settings
from agenda.core.exceptions import register_exception_handlers
from agenda.core.logging import setup_logging
from agenda.db.session import dispose_engine
from agenda.services.limits import close_client


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME} ({settings.ENV})")
    yield
    await close_client()
    await dispose_engine()
    logger.info("Shutdown complete")


def create_application() -> FastAPI:
    setup_logging()
    application = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=lifespan,
    )
    register_exception_handlers(application)
    application.include_router(api_router, prefix=f"{settings.API_PREFIX}/v1")
    return application


app = create_application()
