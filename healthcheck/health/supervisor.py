"""Supervisor — owns the running set of service runners.

The active set is an immutable ``RunnerSet`` published through a single
attribute. ``snapshot()`` reads that attribute once, so a reader racing a
``replace()`` sees either every old service or every new one, never a mix.
Health history is not carried across a swap unless
``preserve_state_on_reload`` is enabled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..config import settings
from ..services.registry import MonitorConfig
from .runner import ServiceRunner
from .state import HealthState

if TYPE_CHECKING:
    from ..notifications import NotificationSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceStatus:
    """One snapshot row: identity plus the state published at read time."""

    id: str
    name: str
    description: str
    state: HealthState


@dataclass(frozen=True)
class RunnerSet:
    """One generation of runners, built from one configuration."""

    config: MonitorConfig
    runners: tuple[ServiceRunner, ...]
    sink: NotificationSink
    executor: ThreadPoolExecutor | None = None


def _sort_key(runner: ServiceRunner) -> tuple[str, str, str]:
    return (runner.service.name.casefold(), runner.service.name, runner.service.id)


def _default_sink(config: MonitorConfig) -> NotificationSink:
    from ..notifications import NotificationManager

    return NotificationManager.from_config(config)


class Supervisor:
    """Starts, snapshots and hot-swaps the per-service runners.

    Lifecycle:
        supervisor = Supervisor()
        await supervisor.start(config)
        supervisor.snapshot()
        await supervisor.replace(new_config)
        await supervisor.stop()
    """

    def __init__(
        self,
        sink_factory: Callable[[MonitorConfig], NotificationSink] = _default_sink,
        grace_seconds: float | None = None,
        preserve_state: bool | None = None,
        runner_factory: Callable[..., ServiceRunner] = ServiceRunner,
    ) -> None:
        self._sink_factory = sink_factory
        self._runner_factory = runner_factory
        self.grace_seconds = (
            settings.replace_grace_seconds if grace_seconds is None else grace_seconds
        )
        self.preserve_state = (
            settings.preserve_state_on_reload if preserve_state is None else preserve_state
        )
        self._active: RunnerSet | None = None
        self._swap_lock = asyncio.Lock()

    # -- public API ------------------------------------------------------------

    @property
    def config(self) -> MonitorConfig | None:
        active = self._active
        return active.config if active else None

    @property
    def runners(self) -> tuple[ServiceRunner, ...]:
        active = self._active
        return active.runners if active else ()

    async def start(self, config: MonitorConfig) -> None:
        """Spawn one runner per enabled service and publish the set."""
        async with self._swap_lock:
            if self._active is not None:
                raise RuntimeError("Supervisor already started; use replace()")
            new_set = self._build(config)
            self._launch(new_set)

    def snapshot(self) -> tuple[ServiceStatus, ...]:
        """Current state of every running service, ordered by display name."""
        active = self._active
        if active is None:
            return ()
        return tuple(
            ServiceStatus(
                id=r.service.id,
                name=r.service.name,
                description=r.service.description,
                state=r.state,
            )
            for r in active.runners
        )

    async def replace(self, new_config: MonitorConfig) -> None:
        """Stop every current runner and start a fresh set from ``new_config``.

        ``new_config`` is already validated; the new set (including its
        notification sink) is built before the old one is touched.
        """
        async with self._swap_lock:
            logger.info("Updating configuration and restarting monitors")
            new_set = self._build(new_config)
            old_set = self._active
            clean: set[str] = set()
            if old_set is not None:
                clean = await self._shutdown(old_set)
            if self.preserve_state and old_set is not None:
                self._carry_over(old_set, new_set, clean)
            self._launch(new_set)
            logger.info("Configuration updated: %d services running", len(new_set.runners))

    async def stop(self) -> None:
        """Stop all runners (process shutdown)."""
        async with self._swap_lock:
            old_set = self._active
            if old_set is None:
                return
            logger.info("Stopping all monitoring tasks")
            await self._shutdown(old_set)
            self._active = None

    # -- internals -------------------------------------------------------------

    def _build(self, config: MonitorConfig) -> RunnerSet:
        sink = self._sink_factory(config)
        services = config.enabled_services()
        for s in config.services.values():
            if not s.enabled:
                logger.info("Service '%s' is disabled, skipping", s.name)

        executor = None
        if services:
            executor = ThreadPoolExecutor(
                max_workers=len(services), thread_name_prefix="probe",
            )
        runners = [
            self._runner_factory(s, config.defaults, sink, executor=executor)
            for s in services
        ]
        runners.sort(key=_sort_key)
        return RunnerSet(config=config, runners=tuple(runners), sink=sink, executor=executor)

    def _launch(self, new_set: RunnerSet) -> None:
        for runner in new_set.runners:
            runner.start()
        self._active = new_set
        logger.info("Monitoring %d services", len(new_set.runners))

    async def _shutdown(self, old_set: RunnerSet) -> set[str]:
        """Stop a generation; returns ids of runners that stopped in time."""
        for runner in old_set.runners:
            runner.signal_stop()

        tasks = {r.task: r for r in old_set.runners if r.task is not None}
        if tasks:
            done, pending = await asyncio.wait(tasks.keys(), timeout=self.grace_seconds)
            for task in pending:
                logger.warning(
                    "Service '%s' did not stop within %.1fs, abandoning it",
                    tasks[task].service.name, self.grace_seconds,
                )
                task.cancel()
        else:
            pending = set()

        if old_set.executor is not None:
            old_set.executor.shutdown(wait=False)
        try:
            await old_set.sink.close()
        except Exception:
            logger.exception("Error closing notification sink")

        abandoned = {tasks[t].service.id for t in pending}
        return {r.service.id for r in old_set.runners if r.service.id not in abandoned}

    def _carry_over(self, old_set: RunnerSet, new_set: RunnerSet, clean: set[str]) -> None:
        """Seed unchanged services with the state their old runner reached."""
        old = {r.service.id: r for r in old_set.runners if r.service.id in clean}
        for runner in new_set.runners:
            prev = old.get(runner.service.id)
            if prev is not None and prev.service.check == runner.service.check:
                runner.state = prev.state
                logger.debug("Keeping health history for '%s'", runner.service.name)
