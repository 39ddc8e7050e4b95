"""Tests for debounce, throttle, rerun and slot handling in the scheduler."""
import asyncio

import pytest

from thriftdiag.config import DiagnosticsSettings
from thriftdiag.diagnostics.scheduler import AnalysisScheduler
from thriftdiag.models.records import DocumentAnalysisState


def _scheduler(**overrides) -> AnalysisScheduler:
    options = {"analysis_delay_ms": 20, "min_analysis_interval_ms": 0, "max_concurrent_analyses": 1}
    options.update(overrides)
    return AnalysisScheduler(DiagnosticsSettings(**options))


def test_burst_within_debounce_window_runs_at_most_twice():
    runs = []

    async def scenario():
        scheduler = _scheduler(analysis_delay_ms=30)

        async def task():
            runs.append(1)

        for _ in range(10):
            assert scheduler.schedule("a", task) is True
        await scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())
    assert 1 <= len(runs) <= 2


def test_request_during_run_produces_single_rerun_with_latest_task():
    calls = []

    async def scenario():
        scheduler = _scheduler()
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow():
            calls.append("first")
            started.set()
            await release.wait()

        async def second():
            calls.append("second")

        async def third():
            calls.append("third")

        scheduler.schedule("a", slow, immediate=True)
        await started.wait()
        assert scheduler.is_running("a")
        assert scheduler.schedule("a", second) is True
        assert scheduler.schedule("a", third) is True
        assert scheduler.is_scheduled("a")
        release.set()
        await scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())
    assert calls == ["first", "third"]


def test_unchanged_version_inside_interval_is_dropped():
    async def scenario():
        scheduler = AnalysisScheduler(
            DiagnosticsSettings(min_analysis_interval_ms=1000), clock=lambda: 100.0
        )
        state = DocumentAnalysisState(version=1, last_analysis_at=99.5)

        async def task():
            pass

        dropped = scheduler.schedule("a", task, version=1, throttle_state=state)
        changed = scheduler.schedule("b", task, version=2, throttle_state=state)
        forced = scheduler.schedule("c", task, version=1, throttle_state=state, immediate=True)
        scheduled = [scheduler.is_scheduled(key) for key in ("a", "b", "c")]
        scheduler.dispose()
        return dropped, changed, forced, scheduled

    dropped, changed, forced, scheduled = asyncio.run(scenario())
    assert dropped is False
    assert changed is True
    assert forced is True
    assert scheduled == [False, True, True]


def test_throttle_delays_immediate_request():
    runs = []

    async def scenario():
        scheduler = _scheduler(min_analysis_interval_ms=100)
        state = DocumentAnalysisState(version=1, last_analysis_at=scheduler.now())

        async def task():
            runs.append(1)

        scheduler.schedule("a", task, version=2, immediate=True, throttle_state=state)
        await asyncio.sleep(0.02)
        before = len(runs)
        await scheduler.wait_idle(timeout=2)
        return before

    assert asyncio.run(scenario()) == 0
    assert runs == [1]


def test_slots_are_granted_in_arrival_order():
    order = []
    peak = 0

    async def scenario():
        nonlocal peak
        scheduler = _scheduler()
        active = 0

        def make(name):
            async def task():
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                order.append(name)
                await asyncio.sleep(0.01)
                active -= 1

            return task

        for name in ("a", "b", "c", "d"):
            scheduler.schedule(name, make(name), immediate=True)
        await scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())
    assert order == ["a", "b", "c", "d"]
    assert peak == 1


def test_concurrency_limit_above_one():
    peak = 0

    async def scenario():
        nonlocal peak
        scheduler = _scheduler(max_concurrent_analyses=2)
        active = 0

        async def task():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1

        for name in ("a", "b", "c", "d"):
            scheduler.schedule(name, task, immediate=True)
        await scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())
    assert peak == 2


def test_queued_request_is_collapsed():
    calls = []

    async def scenario():
        scheduler = _scheduler()
        release = asyncio.Event()

        async def blocker():
            calls.append("a")
            await release.wait()

        async def b1():
            calls.append("b1")

        async def b2():
            calls.append("b2")

        scheduler.schedule("a", blocker, immediate=True)
        await asyncio.sleep(0.01)
        scheduler.schedule("b", b1, immediate=True)
        await asyncio.sleep(0.01)
        assert scheduler.schedule("b", b2) is True
        release.set()
        await scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())
    assert calls == ["a", "b2"]


def test_cancel_clears_debounce():
    runs = []

    async def scenario():
        scheduler = _scheduler()

        async def task():
            runs.append(1)

        scheduler.schedule("a", task)
        scheduler.cancel("a")
        assert not scheduler.is_scheduled("a")
        await asyncio.sleep(0.05)
        assert scheduler.is_idle()

    asyncio.run(scenario())
    assert runs == []


def test_cancel_during_run_suppresses_rerun():
    calls = []

    async def scenario():
        scheduler = _scheduler()
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow():
            calls.append("first")
            started.set()
            await release.wait()

        async def again():
            calls.append("again")

        scheduler.schedule("a", slow, immediate=True)
        await started.wait()
        scheduler.schedule("a", again)
        scheduler.cancel("a")
        release.set()
        await scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())
    assert calls == ["first"]


def test_dispose_drops_everything():
    runs = []

    async def scenario():
        scheduler = _scheduler()

        async def task():
            runs.append(1)

        for name in ("a", "b", "c"):
            scheduler.schedule(name, task)
        scheduler.dispose()
        await asyncio.sleep(0.05)
        return scheduler.is_idle()

    assert asyncio.run(scenario()) is True
    assert runs == []


def test_failing_task_does_not_wedge_key():
    calls = []

    async def scenario():
        scheduler = _scheduler()

        async def broken():
            calls.append("broken")
            raise RuntimeError("boom")

        async def fine():
            calls.append("fine")

        scheduler.schedule("a", broken, immediate=True)
        await scheduler.wait_idle(timeout=2)
        scheduler.schedule("a", fine, immediate=True)
        await scheduler.wait_idle(timeout=2)

    asyncio.run(scenario())
    assert calls == ["broken", "fine"]


def test_wait_idle_times_out():
    async def scenario():
        scheduler = _scheduler()
        release = asyncio.Event()

        async def stuck():
            await release.wait()

        scheduler.schedule("a", stuck, immediate=True)
        try:
            await scheduler.wait_idle(timeout=0.05)
        finally:
            release.set()
            await scheduler.wait_idle(timeout=2)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(scenario())


def test_wait_idle_wakes_on_cancel_and_dispose():
    async def scenario():
        scheduler = _scheduler(analysis_delay_ms=10_000)

        async def task():
            pass

        await scheduler.wait_idle(timeout=0)

        scheduler.schedule("a", task)
        waiter = asyncio.ensure_future(scheduler.wait_idle(timeout=2))
        await asyncio.sleep(0)
        assert not waiter.done()
        scheduler.cancel("a")
        await asyncio.wait_for(waiter, 0.5)

        scheduler.schedule("b", task)
        waiters = [asyncio.ensure_future(scheduler.wait_idle(timeout=2)) for _ in range(2)]
        await asyncio.sleep(0)
        scheduler.dispose()
        await asyncio.wait_for(asyncio.gather(*waiters), 0.5)
        assert scheduler.is_idle()

    asyncio.run(scenario())
