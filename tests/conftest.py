"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

import pytest

from healthcheck.health.engine import Outcome
from healthcheck.health.state import NotificationEvent
from healthcheck.services.registry import (
    Defaults,
    MonitorConfig,
    Overrides,
    Policy,
    ServiceDefinition,
)

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class ScriptedCheck:
    """Stands in for a probe: returns queued outcomes, then repeats the last."""

    kind = "scripted"

    def __init__(
        self,
        outcomes: Iterable[Outcome] = (),
        deadline: float = 1.0,
        gate: threading.Event | None = None,
        name: str = "scripted",
    ) -> None:
        self._outcomes = list(outcomes) or [Outcome.success()]
        self.deadline = deadline
        self.target = name
        self.gate = gate  # when set, execute() blocks until the gate opens
        self.started = threading.Event()
        self.calls = 0

    def execute(self) -> Outcome:
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if len(self._outcomes) > 1:
            return self._outcomes.pop(0)
        return self._outcomes[0]


class RecordingSink:
    """Notification sink that keeps every event it receives."""

    def __init__(self, fail: bool = False) -> None:
        self.events: list[NotificationEvent] = []
        self.closed = False
        self.fail = fail

    async def send(self, event: NotificationEvent) -> None:
        self.events.append(event)
        if self.fail:
            raise RuntimeError("transport down")

    async def close(self) -> None:
        self.closed = True


class StepClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(minutes=1)
        return current


def make_service(
    service_id: str,
    name: str | None = None,
    check=None,
    enabled: bool = True,
    description: str = "",
    **overrides: int,
) -> ServiceDefinition:
    return ServiceDefinition(
        id=service_id,
        name=name or service_id,
        description=description,
        enabled=enabled,
        check=check if check is not None else ScriptedCheck(),
        overrides=Overrides(**overrides),
    )


def make_config(*services: ServiceDefinition, **defaults: int) -> MonitorConfig:
    values = {
        "check_interval_success": 60_000,
        "check_interval_fail": 10_000,
        "notify_failures": 3,
        "rereport": 10,
    }
    values.update(defaults)
    return MonitorConfig(
        telegram_token="",
        telegram_chat_id=0,
        defaults=Defaults(**values),
        services={s.id: s for s in services},
    )


@pytest.fixture
def defaults() -> Defaults:
    return Defaults(
        check_interval_success=60_000,
        check_interval_fail=10_000,
        notify_failures=3,
        rereport=10,
    )


@pytest.fixture
def policy() -> Policy:
    return Policy(
        check_interval_success=60_000,
        check_interval_fail=10_000,
        notify_failures=3,
        rereport=10,
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
