"""FastAPI server for the service monitor."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from ..config import settings
from ..health.supervisor import Supervisor
from ..services.registry import ConfigError, load_config
from .health_routes import health_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load the services file and start one runner per enabled service."""
    config_path = Path(settings.healthcheck_config)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        logger.error("Cannot start monitoring: %s", e)
        raise

    supervisor = Supervisor()
    app.state.supervisor = supervisor
    app.state.config_path = config_path
    await supervisor.start(config)

    yield

    # Shutdown
    await supervisor.stop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="healthcheck - Service Monitor",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api")

    # Dashboard assets, when shipped alongside the service
    static_dir = Path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")

    return app


app = create_app()
