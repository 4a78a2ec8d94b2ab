from __future__ import annotations

from typing import Any

from bookmarksync.sync.hashing import verify_package
from bookmarksync.sync.models import ConflictRecord, Decision, SyncDataPackage


def is_logically_empty(package: SyncDataPackage) -> bool:
    """True when the package carries bookmark/category data and all of it is empty.

    A settings-only package is never considered empty here.
    """
    if package.bookmarks is None and package.categories is None:
        return False
    return not package.bookmarks and not package.categories


def detect(
    local: SyncDataPackage | None,
    remote: SyncDataPackage | None,
    tie_window_ms: int = 0,
) -> Decision:
    """Classify a local/remote pair. Checks run in a fixed order; first match wins."""
    if remote is None:
        return Decision(action="use_local", reason="remote_absent")
    if local is None:
        return Decision(action="use_remote", reason="local_absent")

    local_ok = verify_package(local)
    remote_ok = verify_package(remote)
    if not local_ok and not remote_ok:
        return Decision(action="conflict", kind="hash_mismatch", reason="both_corrupt")
    if not remote_ok:
        return Decision(action="use_local", reason="remote_corrupt")
    if not local_ok:
        return Decision(action="use_remote", reason="local_corrupt")

    local_ts = local.metadata.local_timestamp
    remote_ts = remote.metadata.remote_timestamp

    # Fresh installs can look newer than the populated remote copy.
    if is_logically_empty(local) and local_ts > remote_ts:
        return Decision(action="use_remote", reason="timestamp_trap")

    if abs(local_ts - remote_ts) > max(tie_window_ms, 0):
        if local_ts > remote_ts:
            return Decision(action="use_local", reason="local_newer")
        return Decision(action="use_remote", reason="remote_newer")

    if local.metadata.data_hash == remote.metadata.data_hash:
        return Decision(action="noop", reason="identical")
    return Decision(action="conflict", kind="data_conflict", reason="same_instant_different_content")


def recommended_strategy(record: ConflictRecord) -> str:
    if record.kind == "hash_mismatch":
        return "manual"
    if record.kind == "timestamp_conflict":
        local_ts = record.local_payload.metadata.local_timestamp if record.local_payload else 0
        remote_ts = record.remote_payload.metadata.remote_timestamp if record.remote_payload else 0
        return "use_local" if local_ts > remote_ts else "use_remote"
    return "merge"


def auto_strategy(record: ConflictRecord) -> str:
    """Pick a strategy without asking: a side holding far more records wins outright."""
    local_count = record.local_payload.record_count() if record.local_payload else 0
    remote_count = record.remote_payload.record_count() if record.remote_payload else 0
    if local_count > remote_count * 2:
        return "use_local"
    if remote_count > local_count * 2:
        return "use_remote"
    strategy = recommended_strategy(record)
    if strategy == "manual" and record.kind == "hash_mismatch":
        # Prefer whichever side still verifies.
        if record.local_payload is not None and verify_package(record.local_payload):
            return "use_local"
        if record.remote_payload is not None and verify_package(record.remote_payload):
            return "use_remote"
    return strategy


def describe_conflict(record: ConflictRecord) -> str:
    if record.kind == "data_conflict":
        return f"{record.item.kind}: both sides changed at the same time with different content"
    if record.kind == "timestamp_conflict":
        return f"{record.item.kind}: modification times cannot be ordered"
    return f"{record.item.kind}: content failed its integrity check"


def conflict_stats(records: list[ConflictRecord]) -> dict[str, Any]:
    by_kind: dict[str, int] = {}
    by_collection: dict[str, int] = {}
    for record in records:
        by_kind[record.kind] = by_kind.get(record.kind, 0) + 1
        by_collection[record.item.kind] = by_collection.get(record.item.kind, 0) + 1
    return {
        "total": len(records),
        "by_kind": by_kind,
        "by_collection": by_collection,
        "oldest_detected_at": min((r.detected_at for r in records), default=None),
    }
