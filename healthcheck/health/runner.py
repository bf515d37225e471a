"""Service runner — the scheduling loop behind one monitored service.

Each runner owns its service's ``HealthState`` and repeats
probe → transition → notify → wait. Probes run in a worker thread so a slow
peer never holds up other services. A runner occupies at most one worker: while
an abandoned probe is still running, the next cycle fails fast instead of
queueing another. The wait between probes is cut short as soon as
``signal_stop()`` is called.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from ..config import settings
from ..services.registry import Defaults, ServiceDefinition, resolve_policy
from .engine import Health, Outcome, run_check
from .state import HealthState, NotificationEvent, apply, decide, record_notification

if TYPE_CHECKING:
    from ..notifications import NotificationSink

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunnerPhase(str, Enum):
    SCHEDULED = "scheduled"
    PROBING = "probing"
    STOPPED = "stopped"


class ServiceRunner:
    """Drives the repeated probing of a single service.

    Lifecycle:
        runner = ServiceRunner(service, defaults, sink)
        runner.start()
        ...
        runner.signal_stop()   # or: await runner.stop(grace)
    """

    def __init__(
        self,
        service: ServiceDefinition,
        defaults: Defaults,
        sink: NotificationSink,
        executor: Executor | None = None,
        clock: Callable[[], datetime] = _utcnow,
        initial_state: HealthState | None = None,
        deadline_slack: float | None = None,
    ) -> None:
        self.service = service
        self.policy = resolve_policy(service.overrides, defaults)
        self.sink = sink
        self.state = initial_state or HealthState()
        self.phase = RunnerPhase.SCHEDULED
        self._executor = executor
        self._owns_executor = executor is None
        self._clock = clock
        self._deadline_slack = (
            settings.probe_deadline_slack_seconds if deadline_slack is None else deadline_slack
        )
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._inflight: Future[Outcome] | None = None

    # -- public API ------------------------------------------------------------

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(
            self._run_loop(), name=f"service-{self.service.id}"
        )
        logger.info("Starting monitor for service '%s'", self.service.name)

    def signal_stop(self) -> None:
        self._stop.set()

    async def stop(self, timeout: float) -> bool:
        """Stop the loop; returns False if it had to be abandoned."""
        self.signal_stop()
        if self._task is None:
            self.phase = RunnerPhase.STOPPED
            return True
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        if done:
            return True
        logger.warning(
            "Service '%s' did not stop within %.1fs, abandoning it",
            self.service.name, timeout,
        )
        self._task.cancel()
        return False

    def next_delay(self, state: HealthState) -> int:
        """Milliseconds until the next probe, given the state just reached."""
        if state.health is Health.FAILURE:
            return self.policy.check_interval_fail
        return self.policy.check_interval_success

    async def run_once(self) -> int | None:
        """Run one probe → transition → notify cycle.

        Returns the delay (ms) before the next cycle, or None when a stop was
        requested before or during the probe; a late result is discarded.
        """
        if self._stop.is_set():
            return None

        self.phase = RunnerPhase.PROBING
        logger.info("Running health check for service: %s", self.service.name)
        outcome = await self._probe()
        if self._stop.is_set():
            logger.debug("Service '%s' stopped mid-probe, discarding result", self.service.name)
            return None

        prev = self.state
        new = apply(prev, outcome, self._clock())
        event = decide(
            prev, new, self.policy,
            service_id=self.service.id,
            service_name=self.service.name,
            service_description=self.service.description,
        )
        self.state = record_notification(new, event)

        if outcome.health is Health.SUCCESS:
            logger.info("Service '%s' check succeeded", self.service.name)
        else:
            logger.warning("Service '%s' check failed: %s", self.service.name, outcome.message)

        if event is not None:
            await self._dispatch(event)

        delay = self.next_delay(self.state)
        self.phase = RunnerPhase.SCHEDULED
        logger.debug("Service '%s' next check in %dms", self.service.name, delay)
        return delay

    # -- internals -------------------------------------------------------------

    async def _probe(self) -> Outcome:
        check = self.service.check
        if self._inflight is not None and not self._inflight.done():
            # at most one worker per service; a hung probe must not take more
            return Outcome.failure("Previous probe still running")

        deadline = check.deadline + self._deadline_slack
        try:
            self._inflight = self._submit(check)
        except RuntimeError as e:
            # executor already shut down during a swap
            return Outcome.failure(f"Probe not run: {e}")
        try:
            return await asyncio.wait_for(
                asyncio.wrap_future(self._inflight), timeout=deadline,
            )
        except asyncio.TimeoutError:
            return Outcome.failure(f"Probe deadline exceeded after {deadline:.1f}s")

    def _submit(self, check) -> Future[Outcome]:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"probe-{self.service.id}",
            )
        return self._executor.submit(run_check, check)

    async def _dispatch(self, event: NotificationEvent) -> None:
        try:
            await self.sink.send(event)
        except Exception:
            logger.exception("Notification error for service '%s'", self.service.name)

    async def _run_loop(self) -> None:
        """Persistent loop: first probe immediately, then adaptively."""
        try:
            while not self._stop.is_set():
                try:
                    delay = await self.run_once()
                except Exception:
                    logger.exception("Health check error: %s", self.service.id)
                    delay = self.policy.check_interval_fail
                    self.phase = RunnerPhase.SCHEDULED
                if delay is None:
                    break
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=delay / 1000)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.phase = RunnerPhase.STOPPED
            if self._owns_executor and self._executor is not None:
                self._executor.shutdown(wait=False)
            logger.debug("Monitor for service '%s' stopped", self.service.name)
