"""Per-service health state, its transition function and the alert policy.

Both ``apply`` and ``decide`` are pure: they take immutable ``HealthState``
values and return new ones, so a runner can publish each state with a single
reference assignment and readers never observe a half-updated record.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from .engine import Health, Outcome

if TYPE_CHECKING:
    from ..services.registry import Policy


@dataclass(frozen=True)
class HealthState:
    health: Health = Health.UNKNOWN
    message: str = ""
    consecutive_failures: int = 0
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0
    last_check_time: datetime | None = None
    uptime_start: datetime | None = None
    last_notified_at_failure_count: int | None = None


class EventKind(str, Enum):
    ALERT = "alert"
    STILL_FAILING = "still_failing"
    RECOVERED = "recovered"


@dataclass(frozen=True)
class NotificationEvent:
    service_id: str
    service_name: str
    service_description: str
    kind: EventKind
    detail: str = ""
    failure_count: int = 0


def apply(state: HealthState, outcome: Outcome, now: datetime) -> HealthState:
    """Fold one probe outcome into the state."""
    if outcome.health is Health.SUCCESS:
        return replace(
            state,
            health=Health.SUCCESS,
            message="",
            consecutive_failures=0,
            total_checks=state.total_checks + 1,
            successful_checks=state.successful_checks + 1,
            last_check_time=now,
            # Only the transition into Success starts a new uptime run
            uptime_start=state.uptime_start if state.health is Health.SUCCESS else now,
        )

    if outcome.health is Health.FAILURE:
        return replace(
            state,
            health=Health.FAILURE,
            message=outcome.message,
            consecutive_failures=state.consecutive_failures + 1,
            total_checks=state.total_checks + 1,
            failed_checks=state.failed_checks + 1,
            last_check_time=now,
            uptime_start=None,
        )

    return replace(state, last_check_time=now)


def decide(
    prev: HealthState,
    new: HealthState,
    policy: Policy,
    service_id: str = "",
    service_name: str = "",
    service_description: str = "",
) -> NotificationEvent | None:
    """Return the notification this transition calls for, if any.

    Recovery wins over everything else; a failing streak alerts once when it
    reaches ``notify_failures`` and then every ``rereport`` failures after
    the last alert.
    """

    def event(kind: EventKind, detail: str) -> NotificationEvent:
        return NotificationEvent(
            service_id=service_id,
            service_name=service_name,
            service_description=service_description,
            kind=kind,
            detail=detail,
            failure_count=new.consecutive_failures,
        )

    if new.health is Health.SUCCESS:
        if prev.health is Health.FAILURE:
            return event(EventKind.RECOVERED, "recovered")
        return None

    if new.health is not Health.FAILURE:
        return None

    failures = new.consecutive_failures
    threshold = policy.notify_failures
    if failures == threshold:
        return event(EventKind.ALERT, new.message)

    if failures > threshold:
        baseline = new.last_notified_at_failure_count
        if baseline is None:
            baseline = threshold
        if failures - baseline >= policy.rereport:
            return event(EventKind.STILL_FAILING, f"{new.message} (still failing)")

    return None


def record_notification(state: HealthState, event: NotificationEvent | None) -> HealthState:
    """Remember at which failure count the last alert went out."""
    if event is None:
        return state
    if event.kind is EventKind.RECOVERED:
        return replace(state, last_notified_at_failure_count=None)
    return replace(state, last_notified_at_failure_count=event.failure_count)
