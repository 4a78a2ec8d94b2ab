from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from bookmarksync.core.config import sanitize_interval_minutes
from bookmarksync.core.errors import LockContentionError
from bookmarksync.core.timeutil import iso_from_ms
from bookmarksync.sync.models import SyncResult
from bookmarksync.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger("scheduler")

SCHEDULER_POLL_GRANULARITY_SEC = 1.0


async def _wait_stop_or_timeout(stop_event: asyncio.Event, timeout_sec: float) -> bool:
    if timeout_sec <= 0:
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_sec)
        return True
    except asyncio.TimeoutError:
        return False


def _iso_from_ts(ts: float | None) -> str | None:
    return iso_from_ms(ts * 1000) if ts is not None else None


class SyncScheduler:
    """Timer and event triggers in front of one SyncOrchestrator.

    Never runs two cycles at once: a manual trigger during a cycle raises
    LockContentionError, timer ticks and events during a cycle are skipped
    and counted.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        *,
        data_change_delay_sec: float = 2.0,
        sync_on_data_change: bool = True,
        sync_on_app_open: bool = True,
        poll_granularity_sec: float = SCHEDULER_POLL_GRANULARITY_SEC,
        on_result: Callable[[str, SyncResult], None] | None = None,
    ):
        self.orchestrator = orchestrator
        self.data_change_delay_sec = max(float(data_change_delay_sec), 0.0)
        self.sync_on_data_change = sync_on_data_change
        self.sync_on_app_open = sync_on_app_open
        self.poll_granularity_sec = poll_granularity_sec
        self.on_result = on_result

        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._debounce_task: asyncio.Task | None = None
        self._event_tasks: set[asyncio.Task] = set()
        self._interval_min = 0
        self._interval_changed = False
        self._state: dict[str, Any] = {
            "running": False,
            "enabled": False,
            "configured_interval_min": 0,
            "effective_interval_min": 0,
            "last_started_at": None,
            "last_finished_at": None,
            "last_trigger": None,
            "last_result": None,
            "last_error": None,
            "next_run_at": None,
            "skipped_busy_count": 0,
            "run_count": 0,
        }

    # lifecycle

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_minutes: int) -> None:
        """Start the timer loop; needs a running event loop."""
        self.set_interval(interval_minutes)
        if self.is_started:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event), name="bookmarksync_scheduler")

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            self._debounce_task = None
        for task in list(self._event_tasks):
            task.cancel()

        if self._task is not None:
            try:
                await self._task
            except Exception:
                logger.exception("scheduler_stop_error")

        self._task = None
        self._stop_event = None
        self._state.update(running=False, next_run_at=None)

    def set_interval(self, interval_minutes: int) -> int:
        """Change the interval; the in-flight cycle is left alone, the timer restarts."""
        effective = sanitize_interval_minutes(interval_minutes)
        if effective != self._interval_min:
            self._interval_changed = True
        self._interval_min = effective
        self._state.update(
            enabled=effective > 0,
            configured_interval_min=int(interval_minutes or 0),
            effective_interval_min=effective,
        )
        return effective

    # triggers

    async def trigger_now(self, reason: str = "manual", direction: str | None = None) -> SyncResult:
        return await self._run(reason, direction)

    async def _run(self, reason: str, direction: str | None = None) -> SyncResult:
        if self.orchestrator.is_running:
            raise LockContentionError()
        started = time.time()
        self._state.update(last_started_at=started, last_trigger=reason, last_result="running", last_error=None)
        try:
            result = await self.orchestrator.run_cycle(direction)
        except Exception as e:
            self._state.update(
                last_finished_at=time.time(),
                last_result="failed",
                last_error=str(e),
                run_count=self._state["run_count"] + 1,
            )
            raise
        self._state.update(
            last_finished_at=time.time(),
            last_result=result.status,
            last_error=result.error,
            run_count=self._state["run_count"] + 1,
        )
        if self.on_result is not None:
            try:
                self.on_result(reason, result)
            except Exception:
                logger.exception("result_hook_failed trigger=%s", reason)
        return result

    def _count_busy_skip(self, reason: str) -> None:
        self._state.update(
            skipped_busy_count=self._state["skipped_busy_count"] + 1,
            last_error="sync_busy",
        )
        logger.warning("sync_skipped_busy trigger=%s", reason)

    async def _run_event(self, reason: str) -> SyncResult | None:
        try:
            return await self._run(reason)
        except LockContentionError:
            self._count_busy_skip(reason)
            return None
        except Exception as e:
            logger.exception("event_sync_failed trigger=%s error=%s", reason, e)
            return None

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)
        return task

    def notify_data_changed(self) -> bool:
        """Debounced upload-side trigger after a local edit."""
        if not self.sync_on_data_change:
            return False
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()

        async def _delayed() -> None:
            await asyncio.sleep(self.data_change_delay_sec)
            await self._run_event("data_changed")

        self._debounce_task = self._spawn(_delayed(), "bookmarksync_data_changed")
        return True

    def notify_app_opened(self) -> bool:
        if not self.sync_on_app_open:
            return False
        self._spawn(self._run_event("app_opened"), "bookmarksync_app_opened")
        return True

    # timer

    async def _loop(self, stop_event: asyncio.Event) -> None:
        next_run_at: float | None = None
        self._state.update(running=True, last_error=None, last_result=None)
        logger.info("scheduler_started interval_min=%s", self._interval_min)

        try:
            while not stop_event.is_set():
                interval_sec = self._interval_min * 60
                if interval_sec <= 0:
                    next_run_at = None
                    self._state.update(next_run_at=None)
                    await _wait_stop_or_timeout(stop_event, self.poll_granularity_sec)
                    continue

                now = time.time()
                if next_run_at is None or self._interval_changed:
                    next_run_at = now + interval_sec
                    self._interval_changed = False
                    self._state.update(next_run_at=next_run_at)

                wait_sec = next_run_at - now
                if wait_sec > 0:
                    await _wait_stop_or_timeout(stop_event, min(wait_sec, self.poll_granularity_sec))
                    continue

                try:
                    result = await self._run("scheduled")
                    logger.info("scheduled_sync_completed status=%s items=%s", result.status, len(result.items))
                except LockContentionError:
                    self._count_busy_skip("scheduled")
                except Exception as e:
                    logger.exception("scheduled_sync_failed: %s", e)
                finally:
                    next_run_at = time.time() + self._interval_min * 60
                    self._interval_changed = False
                    self._state.update(next_run_at=next_run_at)
        finally:
            self._state.update(running=False, next_run_at=None)
            logger.info("scheduler_stopped")

    def snapshot(self) -> dict[str, Any]:
        snap = dict(self._state)
        next_run_at = snap.get("next_run_at")
        next_run_in_sec = max(int(next_run_at - time.time()), 0) if next_run_at is not None else None
        return {
            "running": bool(snap["running"]),
            "enabled": bool(snap["enabled"]),
            "syncing": self.orchestrator.is_running,
            "configured_interval_min": snap["configured_interval_min"],
            "effective_interval_min": snap["effective_interval_min"],
            "last_started_at": _iso_from_ts(snap["last_started_at"]),
            "last_finished_at": _iso_from_ts(snap["last_finished_at"]),
            "next_run_at": _iso_from_ts(next_run_at),
            "next_run_in_sec": next_run_in_sec,
            "last_trigger": snap["last_trigger"],
            "last_result": snap["last_result"],
            "last_error": snap["last_error"],
            "run_count": snap["run_count"],
            "skipped_busy_count": snap["skipped_busy_count"],
        }
