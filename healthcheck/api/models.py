"""Pydantic models for API responses."""

from __future__ import annotations

from datetime import datetime
from typing import Union

from pydantic import BaseModel

from ..health.engine import Health
from ..health.supervisor import ServiceStatus


class ServiceStatusOut(BaseModel):
    id: str
    name: str
    description: str
    # "Unknown" | "Success" | {"Failure": "<reason>"}
    state: Union[str, dict[str, str]]
    last_check: datetime | None = None
    consecutive_failures: int
    total_checks: int
    successful_checks: int
    failed_checks: int
    uptime_start: datetime | None = None

    @classmethod
    def from_status(cls, status: ServiceStatus) -> ServiceStatusOut:
        s = status.state
        if s.health is Health.FAILURE:
            state: Union[str, dict[str, str]] = {"Failure": s.message}
        elif s.health is Health.SUCCESS:
            state = "Success"
        else:
            state = "Unknown"
        return cls(
            id=status.id,
            name=status.name,
            description=status.description,
            state=state,
            last_check=s.last_check_time,
            consecutive_failures=s.consecutive_failures,
            total_checks=s.total_checks,
            successful_checks=s.successful_checks,
            failed_checks=s.failed_checks,
            uptime_start=s.uptime_start,
        )


class MessageOut(BaseModel):
    status: str
