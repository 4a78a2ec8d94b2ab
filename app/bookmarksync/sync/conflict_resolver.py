from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from bookmarksync.core.errors import ManualResolutionRequired
from bookmarksync.core.timeutil import now_ms
from bookmarksync.sync.hashing import canonical_json, verify_package
from bookmarksync.sync.metadata import build_package
from bookmarksync.sync.models import (
    COLLECTIONS,
    ConflictRecord,
    DeviceInfo,
    SyncDataPackage,
    bookmark_key,
    category_key,
    normalize_key,
    record_updated_ms,
)

logger = logging.getLogger("sync")

STRATEGIES = ("use_local", "use_remote", "merge", "manual")


def _merge_keyed(
    local: list[dict[str, Any]],
    remote: list[dict[str, Any]],
    key_func: Callable[[dict[str, Any]], str],
    label: str,
    combine: Callable[[dict[str, Any], dict[str, Any], dict[str, Any]], dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    merged: dict[str, dict[str, Any]] = {}
    for side, records in (("local", local), ("remote", remote)):
        for record in records:
            if not isinstance(record, dict):
                continue
            key = key_func(record)
            if not key:
                logger.warning("merge_record_dropped collection=%s side=%s reason=missing_key", label, side)
                continue
            current = merged.get(key)
            if current is None:
                merged[key] = copy.deepcopy(record)
                continue
            # Later updatedAt wins; a tie goes to the incoming (remote) record.
            winner = current if record_updated_ms(current) > record_updated_ms(record) else copy.deepcopy(record)
            if combine is not None:
                winner = combine(winner, current, record)
            merged[key] = winner
    return list(merged.values())


def _member_key(value: object) -> str:
    if isinstance(value, str):
        return normalize_key(value)
    return canonical_json(value)


def _union_members(*member_lists: object) -> list[Any]:
    out: list[Any] = []
    seen: set[str] = set()
    for members in member_lists:
        if not isinstance(members, list):
            continue
        for member in members:
            key = _member_key(member)
            if key in seen:
                continue
            seen.add(key)
            out.append(copy.deepcopy(member))
    return out


def _combine_categories(winner: dict[str, Any], first: dict[str, Any], second: dict[str, Any]) -> dict[str, Any]:
    winner["bookmarks"] = _union_members(first.get("bookmarks"), second.get("bookmarks"))
    return winner


def merge_categories(local: list[dict[str, Any]], remote: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Merge by normalized name; later record wins but member lists are unioned."""
    return _merge_keyed(local or [], remote or [], category_key, "categories", _combine_categories)


def merge_bookmarks(local: list[dict[str, Any]], remote: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Merge by normalized URL; the later record wins in full."""
    return _merge_keyed(local or [], remote or [], bookmark_key, "bookmarks")


def merge_settings(local: dict[str, Any] | None, remote: dict[str, Any] | None) -> dict[str, Any]:
    return {**copy.deepcopy(local or {}), **copy.deepcopy(remote or {})}


def _collections_of(package: SyncDataPackage) -> dict[str, Any]:
    return {name: copy.deepcopy(package.collection(name)) for name in package.carried()}


def merge_packages(local: SyncDataPackage | None, remote: SyncDataPackage | None) -> dict[str, Any]:
    carried = set(local.carried() if local else ()) | set(remote.carried() if remote else ())
    out: dict[str, Any] = {}
    if "categories" in carried:
        out["categories"] = merge_categories(
            (local.categories if local else None) or [], (remote.categories if remote else None) or []
        )
    if "bookmarks" in carried:
        out["bookmarks"] = merge_bookmarks(
            (local.bookmarks if local else None) or [], (remote.bookmarks if remote else None) or []
        )
    if "settings" in carried:
        out["settings"] = merge_settings(local.settings if local else None, remote.settings if remote else None)
    return out


def stamp_package(collections: dict[str, Any], device: DeviceInfo, timestamp: int | None = None) -> SyncDataPackage:
    ts = timestamp if timestamp is not None else now_ms()
    active = device.model_copy(update={"last_active_at": ts})
    return build_package(
        active,
        local_timestamp=ts,
        remote_timestamp=ts,
        last_sync_time=ts,
        created_at=ts,
        **{name: collections[name] for name in COLLECTIONS if name in collections},
    )


def resolve(conflict: ConflictRecord, strategy: str, device: DeviceInfo) -> SyncDataPackage:
    if strategy not in STRATEGIES:
        raise ValueError(f"unknown_strategy: {strategy}")
    if strategy == "manual":
        raise ManualResolutionRequired()

    if strategy == "use_local":
        if conflict.local_payload is None:
            raise ValueError("local_payload_missing")
        collections = _collections_of(conflict.local_payload)
    elif strategy == "use_remote":
        if conflict.remote_payload is None:
            raise ValueError("remote_payload_missing")
        collections = _collections_of(conflict.remote_payload)
    else:
        collections = merge_packages(conflict.local_payload, conflict.remote_payload)

    package = stamp_package(collections, device)
    logger.info(
        "conflict_resolved collection=%s kind=%s strategy=%s",
        conflict.item.kind,
        conflict.kind,
        strategy,
    )
    return package


def resolution_problems(package: SyncDataPackage) -> list[str]:
    problems: list[str] = []
    if not verify_package(package):
        problems.append("hash_mismatch")
    for name, key_func in (("categories", category_key), ("bookmarks", bookmark_key)):
        records = package.collection(name)
        if records is None:
            continue
        keys = [key_func(r) for r in records]
        if len(keys) != len(set(keys)):
            problems.append(f"duplicate_{name}")
    if not package.carried():
        problems.append("empty_package")
    return problems


def validate_resolution(package: SyncDataPackage) -> bool:
    return not resolution_problems(package)
