from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from typing import Any, Callable

from bookmarksync.core.config import AppConfig
from bookmarksync.core.errors import (
    CorruptMetadataError,
    IntegrityError,
    LockContentionError,
    ManualResolutionRequired,
    SyncCancelledError,
    SyncError,
)
from bookmarksync.core.timeutil import now_ms
from bookmarksync.sync.conflict_detector import auto_strategy, conflict_stats, detect
from bookmarksync.sync.conflict_resolver import resolution_problems, resolve
from bookmarksync.sync.device import DeviceIdentity
from bookmarksync.sync.executor import SyncExecutor
from bookmarksync.sync.metadata import MetadataStore, build_collection_package, decode_package
from bookmarksync.sync.models import (
    COLLECTIONS,
    ConflictRecord,
    Decision,
    DeviceInfo,
    SyncDataPackage,
    SyncHistoryEntry,
    SyncItem,
    SyncProgress,
    SyncResult,
    collection_modified_ms,
)
from bookmarksync.sync.stores import LocalStore, RemoteStore

logger = logging.getLogger("sync")

ProgressListener = Callable[[SyncProgress], None]
ResultListener = Callable[[SyncResult], None]

# resolve_conflict() vocabulary -> resolver strategy; None drops the record.
RESOLUTIONS: dict[str, str | None] = {
    "local": "use_local",
    "remote": "use_remote",
    "merge": "merge",
    "skip": None,
}

# run_cycle(direction=...) values; None lets the detector decide.
FORCED_DIRECTIONS = (None, "upload", "download")

# Detector reasons that agree with plain timestamp ordering.
_TIMESTAMP_REASONS = ("remote_absent", "local_newer", "remote_newer")


class SyncOrchestrator:
    """Runs sync cycles over bookmarks, categories and settings.

    One cycle at a time: `run_cycle` and `resolve_conflict` share an asyncio
    lock and reject callers with LockContentionError instead of waiting.
    Conflicts and history live in bounded in-memory queues owned here.
    """

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalStore,
        *,
        base_path: str = "/BookmarkSync",
        device_identity: DeviceIdentity | None = None,
        metadata_store: MetadataStore | None = None,
        race_tolerance_ms: int = 1000,
        conflict_window_ms: int = 1000,
        conflict_resolution: str = "manual",
        history_limit: int = 50,
        conflict_queue_limit: int = 20,
    ):
        self.remote = remote
        self.local = local
        self.base_path = base_path
        self.device_identity = device_identity or DeviceIdentity(local)
        self.metadata = metadata_store or MetadataStore(local)
        self.conflict_window_ms = max(int(conflict_window_ms), 0)
        self.conflict_resolution = conflict_resolution
        self.executor = SyncExecutor(
            remote,
            base_path,
            device_id=self.device_identity.get().id,
            race_tolerance_ms=race_tolerance_ms,
        )

        self._lock = asyncio.Lock()
        self._cancel_requested = False
        self._listeners: list[tuple[ProgressListener | None, ResultListener | None]] = []
        self._history: deque[SyncHistoryEntry] = deque(maxlen=history_limit)
        # Oldest records fall off the left when the queue is full.
        self._conflicts: deque[ConflictRecord] = deque(maxlen=conflict_queue_limit)
        self.progress = SyncProgress()
        self.last_result: SyncResult | None = None

    @classmethod
    def from_config(cls, cfg: AppConfig, remote: RemoteStore, local: LocalStore) -> "SyncOrchestrator":
        return cls(
            remote,
            local,
            base_path=cfg.webdav.base_path,
            device_identity=DeviceIdentity(local, name=cfg.sync.device_name, client_name=cfg.sync.client_name),
            race_tolerance_ms=cfg.sync.race_tolerance_ms,
            conflict_window_ms=cfg.sync.conflict_window_ms,
            conflict_resolution=cfg.sync.conflict_resolution,
            history_limit=cfg.sync.history_limit,
            conflict_queue_limit=cfg.sync.conflict_queue_limit,
        )

    # observers

    def subscribe(
        self,
        on_progress: ProgressListener | None = None,
        on_result: ResultListener | None = None,
    ) -> Callable[[], None]:
        entry = (on_progress, on_result)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def _emit_progress(self, **updates: Any) -> None:
        self.progress = self.progress.model_copy(update=updates)
        snapshot = self.progress.model_copy()
        for on_progress, _ in list(self._listeners):
            if on_progress is None:
                continue
            try:
                on_progress(snapshot)
            except Exception:
                logger.exception("progress_listener_failed")

    def _emit_result(self, result: SyncResult) -> None:
        for _, on_result in list(self._listeners):
            if on_result is None:
                continue
            try:
                on_result(result)
            except Exception:
                logger.exception("result_listener_failed")

    # queries

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> bool:
        """Ask the running cycle to stop at the next item boundary."""
        if not self._lock.locked():
            return False
        self._cancel_requested = True
        logger.info("sync_cancel_requested")
        return True

    def get_history(self, limit: int | None = None) -> list[SyncHistoryEntry]:
        entries = list(self._history)
        return entries[:limit] if limit is not None else entries

    def get_conflicts(self) -> list[ConflictRecord]:
        return list(self._conflicts)

    def conflict_summary(self) -> dict[str, Any]:
        return conflict_stats(list(self._conflicts))

    def is_first_time_sync(self) -> bool:
        return self.metadata.is_first_time_sync()

    def metadata_summary(self) -> dict[str, Any]:
        return self.metadata.summary()

    # cycle

    async def run_cycle(self, direction: str | None = None) -> SyncResult:
        """Run one cycle. `direction` forces every collection up or down, skipping the comparison."""
        if direction not in FORCED_DIRECTIONS:
            raise ValueError(f"invalid_direction: {direction}")
        if self._lock.locked():
            raise LockContentionError()
        async with self._lock:
            return await self._run_cycle_locked(direction)

    async def _run_cycle_locked(self, direction: str | None) -> SyncResult:
        started = now_ms()
        t0 = time.monotonic()
        self._cancel_requested = False
        items: list[SyncItem] = []
        conflict_count = 0
        error: str | None = None

        self._emit_progress(
            status="preparing",
            total_items=len(COLLECTIONS),
            completed_items=0,
            current_item_name=None,
            started_at=started,
            error=None,
        )
        logger.info(
            "sync_cycle_started first_time=%s direction=%s",
            self.metadata.is_first_time_sync(),
            direction or "auto",
        )
        try:
            await self.remote.ensure_directory(self.base_path)
            device = self.device_identity.touch()

            self._emit_progress(status="comparing")
            dataset = self._load_local_dataset()
            for kind in COLLECTIONS:
                items.append(await self._prepare_item(kind, dataset))

            self._emit_progress(status="transferring")
            for index, item in enumerate(items):
                if self._cancel_requested:
                    raise SyncCancelledError()
                self._emit_progress(current_item_name=item.kind, completed_items=index)
                dataset, conflicted = await self._sync_item(item, dataset, device, direction)
                if conflicted:
                    conflict_count += 1
                else:
                    self._drop_conflicts(item.kind)
                self._emit_progress(completed_items=index + 1)
                # Let observers run between items.
                await asyncio.sleep(0)
        except SyncError as e:
            error = str(e)
            logger.error("sync_cycle_failed error=%s", error)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.exception("sync_cycle_failed error=%s", error)

        duration_ms = int((time.monotonic() - t0) * 1000)
        result = self._build_result(items, conflict_count, error, duration_ms)
        self._record_history(result, started)
        self.last_result = result

        self._emit_progress(status=result.status, current_item_name=None, error=result.error)
        self._emit_result(result)
        self._emit_progress(status="idle")
        logger.info(
            "sync_cycle_completed status=%s items=%s conflicts=%s duration_ms=%s",
            result.status,
            len(items),
            conflict_count,
            duration_ms,
        )
        return result

    def _build_result(
        self,
        items: list[SyncItem],
        conflict_count: int,
        error: str | None,
        duration_ms: int,
    ) -> SyncResult:
        snapshot = [item.model_copy() for item in items]
        if error is not None:
            return SyncResult(
                status="error",
                message=error,
                error=error,
                timestamp=now_ms(),
                items=snapshot,
                conflict_count=conflict_count,
                duration_ms=duration_ms,
            )
        if conflict_count:
            return SyncResult(
                status="conflict",
                message=f"conflicts_pending count={len(self._conflicts)}",
                timestamp=now_ms(),
                items=snapshot,
                conflict_count=conflict_count,
                duration_ms=duration_ms,
            )
        counts: dict[str, int] = {}
        for item in items:
            counts[item.status] = counts.get(item.status, 0) + 1
        detail = " ".join(f"{k}={v}" for k, v in sorted(counts.items()))
        return SyncResult(
            status="success",
            message=f"sync_completed {detail}".strip(),
            timestamp=now_ms(),
            items=snapshot,
            duration_ms=duration_ms,
        )

    def _record_history(self, result: SyncResult, started: int) -> None:
        self._history.appendleft(
            SyncHistoryEntry(
                id=uuid.uuid4().hex[:12],
                timestamp=started,
                status=result.status,
                item_count=len(result.items),
                duration_ms=result.duration_ms,
                conflict_count=result.conflict_count,
                error=result.error,
            )
        )

    def _load_local_dataset(self) -> dict[str, Any]:
        raw = self.local.load_dataset() or {}
        categories = raw.get("categories")
        bookmarks = raw.get("bookmarks")
        settings = raw.get("settings")
        return {
            "categories": list(categories) if isinstance(categories, list) else [],
            "bookmarks": list(bookmarks) if isinstance(bookmarks, list) else [],
            "settings": dict(settings) if isinstance(settings, dict) else {},
        }

    async def _prepare_item(self, kind: str, dataset: dict[str, Any]) -> SyncItem:
        observed = await self.remote.get_last_modified(self.executor.resource_path(kind))
        local_mtime = self.metadata.get_local_modified_time(kind)
        if not local_mtime and kind != "settings":
            local_mtime = collection_modified_ms(dataset[kind])
        return SyncItem(
            id=kind,
            kind=kind,
            local_modified_at=local_mtime,
            remote_observed_at=observed,
        )

    def _local_package(self, item: SyncItem, payload: Any, device: DeviceInfo) -> SyncDataPackage:
        kind = item.kind
        try:
            last = self.metadata.load(kind)
        except CorruptMetadataError as e:
            logger.warning("metadata_corrupt kind=%s error=%s", kind, e)
            draft = build_collection_package(kind, payload, device, local_timestamp=item.local_modified_at or 0)
            last = self.metadata.repair(kind, draft)
        return build_collection_package(
            kind,
            payload,
            device,
            local_timestamp=item.local_modified_at or 0,
            remote_timestamp=last.remote_timestamp if last else 0,
            last_sync_time=last.last_sync_time if last else 0,
        )

    def _unchanged_since_last_sync(self, item: SyncItem, local_pkg: SyncDataPackage) -> bool:
        if item.remote_observed_at is None:
            return False
        try:
            last = self.metadata.load(item.kind)
        except CorruptMetadataError:
            return False
        if last is None:
            return False
        return (
            item.remote_observed_at == self.metadata.get_remote_observed(item.kind)
            and last.data_hash == local_pkg.metadata.data_hash
            and last.local_timestamp == local_pkg.metadata.local_timestamp
        )

    async def _read_remote(self, item: SyncItem, device: DeviceInfo) -> tuple[SyncDataPackage | None, bool]:
        """Return (package, unreadable)."""
        if item.remote_observed_at is None:
            return None, False
        try:
            raw = await self.remote.read_file(self.executor.resource_path(item.kind))
        except FileNotFoundError:
            return None, False
        try:
            return decode_package(raw, device.id, fallback_timestamp=item.remote_observed_at), False
        except IntegrityError as e:
            logger.warning("remote_payload_unreadable kind=%s error=%s", item.kind, e)
            return None, True

    async def _sync_item(
        self,
        item: SyncItem,
        dataset: dict[str, Any],
        device: DeviceInfo,
        direction: str | None = None,
    ) -> tuple[dict[str, Any], bool]:
        kind = item.kind
        item.status = "syncing"
        if direction == "download" and item.remote_observed_at is None:
            item.status = "noop"
            logger.info("item_skipped kind=%s reason=remote_absent direction=download", kind)
            return dataset, False
        if direction == "upload":
            # A forced upload becomes the newest copy everywhere.
            item.local_modified_at = now_ms()
            self.metadata.set_local_modified_time(kind, item.local_modified_at)
        local_pkg = self._local_package(item, dataset[kind], device)

        if direction is not None:
            remote_pkg = None
            decision = Decision(
                action="use_local" if direction == "upload" else "use_remote",
                reason=f"forced_{direction}",
            )
        elif self._unchanged_since_last_sync(item, local_pkg):
            item.status = "noop"
            item.remote_modified_at = local_pkg.metadata.remote_timestamp
            logger.debug("item_unchanged kind=%s", kind)
            return dataset, False
        else:
            remote_pkg, unreadable = await self._read_remote(item, device)
            if unreadable:
                decision = Decision(action="use_local", reason="remote_unreadable")
            else:
                decision = detect(local_pkg, remote_pkg, self.conflict_window_ms)
        logger.info("item_compared kind=%s decision=%s reason=%s", kind, decision.action, decision.reason)

        if decision.conflict:
            return await self._handle_conflict(item, local_pkg, remote_pkg, decision.kind or "data_conflict", device, dataset)

        if decision.noop and remote_pkg is not None:
            item.status = "noop"
            item.remote_modified_at = remote_pkg.metadata.remote_timestamp
            meta = local_pkg.metadata.model_copy(
                update={"remote_timestamp": remote_pkg.metadata.remote_timestamp, "last_sync_time": now_ms()}
            )
            self.metadata.save(kind, meta, item.remote_observed_at)
            return dataset, False

        remote_ts = remote_pkg.metadata.remote_timestamp if remote_pkg is not None else None
        if decision.reason in _TIMESTAMP_REASONS:
            item.remote_modified_at = remote_ts
        else:
            # The detector overrode timestamp order; withhold the local time so the
            # executor follows the declared direction.
            item.local_modified_at = None
            item.remote_modified_at = remote_ts if remote_ts is not None else item.remote_observed_at
            item.direction = "upload" if decision.use_local else "download"

        try:
            result = await self.executor.run(item, local_pkg)
        except IntegrityError as e:
            logger.warning("download_integrity_failed kind=%s error=%s", kind, e)
            return await self._handle_conflict(item, local_pkg, remote_pkg, "hash_mismatch", device, dataset)

        path = self.executor.resource_path(kind)
        if result.action == "upload":
            item.status = "uploaded"
            observed = await self.remote.get_last_modified(path)
            self.metadata.save(kind, result.payload.metadata, observed)
        elif result.action == "download":
            item.status = "downloaded"
            dataset = self._store_local(kind, result.payload, dataset)
            observed = await self.remote.get_last_modified(path)
            meta = result.payload.metadata.model_copy(
                update={"local_timestamp": result.payload.metadata.remote_timestamp, "last_sync_time": now_ms()}
            )
            self.metadata.save(kind, meta, observed)
        else:
            item.status = "noop"
            self.metadata.save(kind, local_pkg.metadata.model_copy(update={"last_sync_time": now_ms()}), item.remote_observed_at)
        return dataset, False

    def _store_local(self, kind: str, package: SyncDataPackage, dataset: dict[str, Any]) -> dict[str, Any]:
        updated = dict(dataset)
        updated[kind] = package.collection(kind)
        self.local.save_dataset(updated)
        # Local copy takes the content time of what it received.
        self.metadata.set_local_modified_time(kind, package.metadata.remote_timestamp)
        return updated

    async def _handle_conflict(
        self,
        item: SyncItem,
        local_pkg: SyncDataPackage,
        remote_pkg: SyncDataPackage | None,
        kind: str,
        device: DeviceInfo,
        dataset: dict[str, Any],
    ) -> tuple[dict[str, Any], bool]:
        item.status = "conflict"
        record = ConflictRecord(
            item=item.model_copy(),
            local_payload=local_pkg,
            remote_payload=remote_pkg,
            kind=kind,
            detected_at=now_ms(),
        )

        strategy = self.conflict_resolution
        if strategy == "auto":
            strategy = auto_strategy(record)
        if strategy != "manual":
            try:
                dataset = await self._apply_resolution(record, strategy, device, dataset)
            except (ManualResolutionRequired, IntegrityError, ValueError) as e:
                logger.warning("conflict_auto_resolve_skipped kind=%s strategy=%s error=%s", item.kind, strategy, e)
            else:
                item.status = "uploaded"
                return dataset, False

        # One slot per collection: a newer detection replaces the queued one.
        replaced = self._drop_conflicts(item.kind)
        self._conflicts.append(record)
        logger.warning(
            "conflict_queued collection=%s kind=%s replaced=%s queued=%s",
            item.kind,
            kind,
            replaced,
            len(self._conflicts),
        )
        return dataset, True

    async def _apply_resolution(
        self,
        record: ConflictRecord,
        strategy: str,
        device: DeviceInfo,
        dataset: dict[str, Any],
    ) -> dict[str, Any]:
        kind = record.item.kind
        package = resolve(record, strategy, device)
        problems = resolution_problems(package)
        if problems:
            raise IntegrityError(f"resolution_invalid kind={kind} problems={','.join(problems)}")

        dataset = self._store_local(kind, package, dataset)
        path = self.executor.resource_path(kind)
        await self.remote.write_file(path, package.to_bytes())
        observed = await self.remote.get_last_modified(path)
        self.metadata.save(kind, package.metadata, observed)
        record.resolution = strategy
        return dataset

    async def resolve_conflict(self, index: int, resolution: str) -> None:
        if resolution not in RESOLUTIONS:
            raise ValueError(f"invalid_resolution: {resolution}")
        if self._lock.locked():
            raise LockContentionError()
        async with self._lock:
            if index < 0 or index >= len(self._conflicts):
                raise IndexError(f"conflict_index_out_of_range: {index}")
            record = self._conflicts[index]
            strategy = RESOLUTIONS[resolution]
            if strategy is not None:
                device = self.device_identity.touch()
                await self.remote.ensure_directory(self.base_path)
                await self._apply_resolution(record, strategy, device, self._load_local_dataset())
            else:
                record.resolution = "skip"
                logger.info("conflict_skipped collection=%s kind=%s", record.item.kind, record.kind)
            self._drop_conflicts(record.item.kind)

    def _drop_conflicts(self, kind: str) -> int:
        stale = [record for record in self._conflicts if record.item.kind == kind]
        for record in stale:
            self._conflicts.remove(record)
        return len(stale)

    # local state

    def record_local_edit(self, kind: str, payload: Any) -> int:
        """Store a locally edited collection and stamp it modified now.

        Returns the new modification time. The next cycle uploads it.
        """
        if kind not in COLLECTIONS:
            raise ValueError(f"unknown_collection: {kind}")
        expected = dict if kind == "settings" else list
        if not isinstance(payload, expected):
            raise ValueError(f"invalid_payload: {kind} expects {expected.__name__}")
        if self._lock.locked():
            raise LockContentionError()
        modified_at = now_ms()
        self.local.save_dataset({kind: payload})
        self.metadata.set_local_modified_time(kind, modified_at)
        logger.info("local_edit_recorded collection=%s modified_at=%s", kind, modified_at)
        return modified_at

    def clear_sync_data(self) -> None:
        """Forget per-collection sync state and queued conflicts; local data stays."""
        if self._lock.locked():
            raise LockContentionError()
        for kind in COLLECTIONS:
            self.metadata.clear(kind)
        dropped = len(self._conflicts)
        self._conflicts.clear()
        self.last_result = None
        logger.info("sync_data_cleared conflicts_dropped=%s", dropped)
