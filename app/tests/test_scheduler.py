import asyncio

import pytest

from bookmarksync.core.errors import LockContentionError
from bookmarksync.sync.orchestrator import SyncOrchestrator
from bookmarksync.sync.scheduler import SyncScheduler

from fakes import BASE_PATH, FakeLocalStore, FakeRemoteStore, bookmark


def _scheduler(remote=None, **kwargs) -> SyncScheduler:
    remote = remote or FakeRemoteStore()
    local = FakeLocalStore({"bookmarks": [bookmark("https://a.example", "A")]})
    orchestrator = SyncOrchestrator(remote, local, base_path=BASE_PATH)
    return SyncScheduler(orchestrator, **kwargs)


def test_set_interval_clamps_and_disables():
    scheduler = _scheduler()

    assert scheduler.set_interval(5000) == 24 * 60
    assert scheduler.snapshot()["configured_interval_min"] == 5000
    assert scheduler.set_interval(0) == 0
    assert scheduler.snapshot()["enabled"] is False
    assert scheduler.set_interval(15) == 15
    assert scheduler.snapshot()["effective_interval_min"] == 15


def test_manual_trigger_while_busy_is_rejected():
    async def scenario():
        remote = FakeRemoteStore()
        remote.gate = asyncio.Event()
        scheduler = _scheduler(remote, data_change_delay_sec=0)
        first = asyncio.create_task(scheduler.trigger_now("manual"))
        await asyncio.sleep(0)

        with pytest.raises(LockContentionError):
            await scheduler.trigger_now("manual")

        # Event triggers during the cycle are skipped, not queued.
        assert scheduler.notify_app_opened() is True
        for _ in range(3):
            await asyncio.sleep(0)

        remote.gate.set()
        await first
        return remote, scheduler.snapshot()

    remote, snap = asyncio.run(scenario())
    assert remote.directories == ["/BookmarkSync"]
    assert snap["run_count"] == 1
    assert snap["skipped_busy_count"] == 1
    assert snap["last_result"] == "success"


def test_result_hook_receives_trigger_name():
    seen = []
    scheduler = _scheduler(on_result=lambda reason, result: seen.append((reason, result.status)))

    asyncio.run(scheduler.trigger_now("manual_web"))

    assert seen == [("manual_web", "success")]


def test_data_change_notifications_are_debounced():
    async def scenario():
        scheduler = _scheduler(data_change_delay_sec=0.05)
        assert scheduler.notify_data_changed()
        assert scheduler.notify_data_changed()
        assert scheduler.notify_data_changed()
        await asyncio.sleep(0.3)
        return scheduler.snapshot()

    snap = asyncio.run(scenario())
    assert snap["run_count"] == 1
    assert snap["last_trigger"] == "data_changed"


def test_disabled_event_triggers():
    scheduler = _scheduler(sync_on_data_change=False, sync_on_app_open=False)
    assert scheduler.notify_data_changed() is False
    assert scheduler.notify_app_opened() is False


def test_timer_runs_scheduled_cycle(monkeypatch):
    async def scenario():
        scheduler = _scheduler(poll_granularity_sec=0.01)
        # A one-minute interval shrunk to a few milliseconds.
        monkeypatch.setattr("bookmarksync.sync.scheduler.time.time", _fast_clock())
        scheduler.start(1)
        assert scheduler.is_started
        for _ in range(100):
            if scheduler.snapshot()["run_count"]:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(scenario())
    snap = scheduler.snapshot()
    assert not scheduler.is_started
    assert snap["run_count"] >= 1
    assert snap["last_trigger"] == "scheduled"
    assert snap["running"] is False


def _fast_clock():
    state = {"now": 1_700_000_000.0}

    def _time():
        state["now"] += 10.0
        return state["now"]

    return _time


def test_interval_change_during_cycle_restarts_timer_only():
    async def scenario():
        remote = FakeRemoteStore()
        remote.gate = asyncio.Event()
        scheduler = _scheduler(remote, poll_granularity_sec=0.01)
        scheduler.start(30)
        running = asyncio.create_task(scheduler.trigger_now("manual"))
        await asyncio.sleep(0.05)
        before = scheduler.snapshot()

        assert scheduler.set_interval(5) == 5
        await asyncio.sleep(0.05)
        after = scheduler.snapshot()

        remote.gate.set()
        result = await running
        await scheduler.stop()
        return before, after, result, scheduler.snapshot()

    before, after, result, final = asyncio.run(scenario())
    assert before["syncing"] is True
    assert before["next_run_in_sec"] > 25 * 60
    assert after["syncing"] is True
    assert after["effective_interval_min"] == 5
    assert after["next_run_in_sec"] <= 5 * 60
    assert result.status == "success"
    assert final["run_count"] == 1
    assert final["skipped_busy_count"] == 0


def test_forced_direction_reaches_the_cycle():
    remote = FakeRemoteStore()
    scheduler = _scheduler(remote)

    result = asyncio.run(scheduler.trigger_now("manual", direction="download"))

    assert [item.status for item in result.items] == ["noop", "noop", "noop"]
    assert remote.writes == []
