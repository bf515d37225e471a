"""API routes for service status and live configuration.

Endpoints:
  GET  /api/services  — current state of every running service
  GET  /api/config    — active configuration
  PUT  /api/config    — validate, persist and hot-swap a new configuration
  GET  /api/health    — liveness probe
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import PlainTextResponse

from ..services.registry import ConfigError, config_to_dict, parse_config, save_config
from .models import MessageOut, ServiceStatusOut

logger = logging.getLogger(__name__)

health_router = APIRouter()


@health_router.get("/services", response_model=list[ServiceStatusOut])
def list_services(request: Request) -> list[ServiceStatusOut]:
    """All running services, ordered by display name."""
    supervisor = request.app.state.supervisor
    return [ServiceStatusOut.from_status(s) for s in supervisor.snapshot()]


@health_router.get("/config")
def get_config(request: Request) -> dict[str, Any]:
    config = request.app.state.supervisor.config
    if config is None:
        raise HTTPException(status_code=503, detail="Monitoring not started")
    return config_to_dict(config)


@health_router.put("/config", response_model=MessageOut)
async def update_config(request: Request, body: Any = Body(...)) -> MessageOut:
    """Replace the running configuration.

    The document is validated and written to disk before any running
    service is stopped; a rejected update leaves everything as it was. If
    the swap itself fails, the previous file contents are restored.
    """
    try:
        new_config = parse_config(body)
    except ConfigError as e:
        logger.warning("Rejected configuration update: %s", e)
        raise HTTPException(status_code=422, detail=str(e))

    supervisor = request.app.state.supervisor
    old_config = supervisor.config
    config_path: Path | None = getattr(request.app.state, "config_path", None)
    if config_path is not None:
        try:
            save_config(new_config, config_path)
        except OSError as e:
            logger.error("Failed to write configuration: %s", e)
            raise HTTPException(
                status_code=500, detail=f"Failed to update configuration: {e}",
            )

    try:
        await supervisor.replace(new_config)
    except Exception as e:
        # replace() builds the new set before stopping the old one; restore the file to match
        logger.exception("Failed to apply configuration")
        if config_path is not None and old_config is not None:
            save_config(old_config, config_path)
        raise HTTPException(
            status_code=500, detail=f"Failed to apply configuration: {e}",
        )
    logger.info("Configuration updated successfully via API")
    return MessageOut(status="Configuration updated successfully")


@health_router.get("/health", response_class=PlainTextResponse)
def health_check() -> str:
    return "OK"
