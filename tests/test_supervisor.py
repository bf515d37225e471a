"""Tests for the supervisor: startup, snapshots and hot swap."""

from __future__ import annotations

import asyncio
import functools
import threading

import pytest
from conftest import RecordingSink, ScriptedCheck, make_config, make_service

from healthcheck.health.engine import Health, Outcome
from healthcheck.health.runner import ServiceRunner
from healthcheck.health.supervisor import Supervisor

FAIL = Outcome.failure("down")


class SinkFactory:
    def __init__(self) -> None:
        self.sinks: list[RecordingSink] = []

    def __call__(self, config) -> RecordingSink:
        sink = RecordingSink()
        self.sinks.append(sink)
        return sink


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while not predicate():
        if loop.time() > end:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _supervisor(**kwargs) -> Supervisor:
    kwargs.setdefault("sink_factory", SinkFactory())
    kwargs.setdefault("grace_seconds", 1.0)
    kwargs.setdefault("preserve_state", False)
    return Supervisor(**kwargs)


class TestStart:
    @pytest.mark.asyncio
    async def test_snapshot_ordered_by_name_then_id(self) -> None:
        config = make_config(
            make_service("c", "beta"),
            make_service("b", "Alpha"),
            make_service("a", "alpha"),
            make_service("d", "Alpha"),
        )
        sup = _supervisor()
        await sup.start(config)
        try:
            ids = [s.id for s in sup.snapshot()]
            assert ids == ["b", "d", "a", "c"]
            assert [s.id for s in sup.snapshot()] == ids
        finally:
            await sup.stop()

    @pytest.mark.asyncio
    async def test_scenario_e_disabled_service_never_runs(self) -> None:
        disabled_check = ScriptedCheck()
        enabled_check = ScriptedCheck()
        config = make_config(
            make_service("on", "On", check=enabled_check),
            make_service("off", "Off", check=disabled_check, enabled=False),
        )
        sup = _supervisor()
        await sup.start(config)
        try:
            await _wait_for(lambda: enabled_check.calls >= 1)
            assert [s.id for s in sup.snapshot()] == ["on"]
            assert disabled_check.calls == 0
        finally:
            await sup.stop()

    @pytest.mark.asyncio
    async def test_snapshot_reflects_runner_state(self) -> None:
        check = ScriptedCheck([FAIL])
        sup = _supervisor()
        await sup.start(make_config(make_service("x", "X", check=check, description="d")))
        try:
            await _wait_for(lambda: sup.snapshot()[0].state.total_checks >= 1)
            row = sup.snapshot()[0]
            assert row.name == "X"
            assert row.description == "d"
            assert row.state.health is Health.FAILURE
        finally:
            await sup.stop()

    @pytest.mark.asyncio
    async def test_hung_service_does_not_starve_its_neighbours(self) -> None:
        gate = threading.Event()
        hung = ScriptedCheck(gate=gate, deadline=0.05)
        healthy = ScriptedCheck([Outcome.success()])
        sup = _supervisor(runner_factory=functools.partial(ServiceRunner, deadline_slack=0.05))
        await sup.start(make_config(
            make_service("hung", check=hung, check_interval_fail=20),
            make_service("ok", check=healthy, check_interval_success=20),
        ))
        try:
            await asyncio.sleep(1.0)
            rows = {s.id: s.state for s in sup.snapshot()}
            assert rows["hung"].failed_checks >= 2
            assert hung.calls == 1
            assert rows["ok"].total_checks >= 5
            assert rows["ok"].failed_checks == 0
        finally:
            gate.set()
            await sup.stop()

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self) -> None:
        sup = _supervisor()
        await sup.start(make_config())
        with pytest.raises(RuntimeError):
            await sup.start(make_config())
        await sup.stop()

    @pytest.mark.asyncio
    async def test_empty_before_start(self) -> None:
        sup = _supervisor()
        assert sup.snapshot() == ()
        assert sup.config is None


class TestReplace:
    @pytest.mark.asyncio
    async def test_replace_swaps_whole_set_with_fresh_state(self) -> None:
        factory = SinkFactory()
        sup = _supervisor(sink_factory=factory)
        old_check = ScriptedCheck()
        await sup.start(make_config(make_service("a", "A", check=old_check), make_service("b", "B")))
        await _wait_for(lambda: all(s.state.total_checks >= 1 for s in sup.snapshot()))

        new_config = make_config(make_service("a", "A", check=ScriptedCheck()), make_service("c", "C"))
        await sup.replace(new_config)
        try:
            assert [s.id for s in sup.snapshot()] == ["a", "c"]
            assert sup.config is new_config
            assert factory.sinks[0].closed
            assert not factory.sinks[1].closed
            calls_at_swap = old_check.calls
            await asyncio.sleep(0.05)
            assert old_check.calls == calls_at_swap
        finally:
            await sup.stop()

    @pytest.mark.asyncio
    async def test_scenario_d_snapshots_never_mix(self) -> None:
        old_ids = {"o1", "o2", "o3"}
        new_ids = {"n1", "n2"}
        gate = threading.Event()
        slow = ScriptedCheck(gate=gate, deadline=30)

        sup = _supervisor(grace_seconds=2.0)
        await sup.start(make_config(
            make_service("o1", check=slow), make_service("o2"), make_service("o3"),
        ))
        await _wait_for(slow.started.is_set)

        seen: list[set[str]] = []
        swap = asyncio.ensure_future(
            sup.replace(make_config(make_service("n1"), make_service("n2")))
        )
        # replace() is now waiting for the slow probe; keep reading
        for _ in range(10):
            seen.append({s.id for s in sup.snapshot()})
            await asyncio.sleep(0.01)
        gate.set()
        await swap
        seen.append({s.id for s in sup.snapshot()})
        try:
            assert all(ids in (old_ids, new_ids) for ids in seen)
            assert seen[0] == old_ids
            assert seen[-1] == new_ids
        finally:
            await sup.stop()

    @pytest.mark.asyncio
    async def test_stuck_runner_is_abandoned(self) -> None:
        gate = threading.Event()
        stuck = ScriptedCheck(gate=gate, deadline=30)
        sup = _supervisor(grace_seconds=0.05)
        await sup.start(make_config(make_service("stuck", check=stuck)))
        await _wait_for(stuck.started.is_set)
        old_runner = sup.runners[0]
        try:
            await asyncio.wait_for(sup.replace(make_config(make_service("next"))), timeout=2.0)
            assert [s.id for s in sup.snapshot()] == ["next"]
            await asyncio.wait({old_runner.task}, timeout=1.0)
            assert old_runner.task.done()
            assert old_runner.state.total_checks == 0
        finally:
            gate.set()
            await sup.stop()

    @pytest.mark.asyncio
    async def test_preserve_state_for_unchanged_services(self) -> None:
        shared = ScriptedCheck([FAIL])
        sup = _supervisor(preserve_state=True)
        await sup.start(make_config(
            make_service("keep", check=shared), make_service("changed"),
        ))
        await _wait_for(lambda: all(s.state.total_checks >= 1 for s in sup.snapshot()))

        await sup.replace(make_config(
            make_service("keep", check=shared), make_service("changed", check=ScriptedCheck()),
        ))
        def keep_state():
            return next(s.state for s in sup.snapshot() if s.id == "keep")

        try:
            await _wait_for(lambda: keep_state().total_checks >= 2)
            assert keep_state().consecutive_failures >= 2
            changed = next(s.state for s in sup.snapshot() if s.id == "changed")
            assert changed.total_checks <= 1
        finally:
            await sup.stop()

    @pytest.mark.asyncio
    async def test_history_dropped_by_default(self) -> None:
        shared = ScriptedCheck([FAIL])
        sup = _supervisor()
        await sup.start(make_config(make_service("keep", check=shared, check_interval_fail=60_000)))
        await _wait_for(lambda: sup.snapshot()[0].state.total_checks == 1)
        await sup.replace(make_config(make_service("keep", check=shared, check_interval_fail=60_000)))
        try:
            await _wait_for(lambda: sup.snapshot()[0].state.total_checks == 1)
            assert sup.snapshot()[0].state.consecutive_failures == 1
        finally:
            await sup.stop()

    @pytest.mark.asyncio
    async def test_stop_clears_active_set(self) -> None:
        sup = _supervisor()
        await sup.start(make_config(make_service("a")))
        runner = sup.runners[0]
        await sup.stop()
        assert sup.snapshot() == ()
        assert runner.task.done()
