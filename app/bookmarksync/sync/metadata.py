from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from bookmarksync.core.errors import CorruptMetadataError, IntegrityError
from bookmarksync.core.timeutil import iso_from_ms, now_ms
from bookmarksync.sync.hashing import hash_dataset, verify_package
from bookmarksync.sync.models import (
    COLLECTIONS,
    DATA_VERSION,
    DeviceInfo,
    SyncDataPackage,
    SyncMetadata,
)
from bookmarksync.sync.settings_schema import needs_migration, normalize_settings_payload
from bookmarksync.sync.stores import LocalStore

logger = logging.getLogger("sync")

SYNC_METADATA_KEY = "sync_metadata:{}"
REMOTE_OBSERVED_KEY = "remote_observed:{}"

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")
_TIMESTAMP_FIELDS = ("lastSyncTime", "localTimestamp", "remoteTimestamp")


def metadata_problems(data: object) -> list[str]:
    """List what is wrong with a wire-format metadata object; empty when valid."""
    if not isinstance(data, dict):
        return ["metadata_not_an_object"]
    problems: list[str] = []
    for field in _TIMESTAMP_FIELDS:
        value = data.get(field)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            problems.append(f"invalid_{field}")
    data_hash = data.get("dataHash")
    if not isinstance(data_hash, str) or not _HASH_RE.match(data_hash):
        problems.append("invalid_dataHash")
    if not isinstance(data.get("schemaVersion"), str) or not data.get("schemaVersion"):
        problems.append("invalid_schemaVersion")
    if not isinstance(data.get("deviceId"), str) or not data.get("deviceId"):
        problems.append("invalid_deviceId")
    return problems


def repair_metadata(
    partial: object,
    package_hash: str,
    device_id: str,
    fallback_timestamp: int | None = None,
) -> SyncMetadata:
    """Rebuild metadata around a payload, keeping whichever timestamps survived."""
    src = partial if isinstance(partial, dict) else {}
    fallback = fallback_timestamp if fallback_timestamp is not None else now_ms()

    def _ts(field: str) -> int:
        value = src.get(field)
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
            return value
        return fallback

    device = src.get("deviceId")
    return SyncMetadata(
        last_sync_time=_ts("lastSyncTime"),
        local_timestamp=_ts("localTimestamp"),
        remote_timestamp=_ts("remoteTimestamp"),
        data_hash=package_hash,
        schema_version=DATA_VERSION,
        device_id=device if isinstance(device, str) and device else device_id,
    )


def build_package(
    device: DeviceInfo,
    *,
    categories: list[dict[str, Any]] | None = None,
    bookmarks: list[dict[str, Any]] | None = None,
    settings: dict[str, Any] | None = None,
    local_timestamp: int = 0,
    remote_timestamp: int = 0,
    last_sync_time: int = 0,
    created_at: int | None = None,
) -> SyncDataPackage:
    if settings is not None:
        settings = normalize_settings_payload(settings)
    metadata = SyncMetadata(
        last_sync_time=last_sync_time,
        local_timestamp=local_timestamp,
        remote_timestamp=remote_timestamp,
        data_hash=hash_dataset(categories, bookmarks, settings),
        schema_version=DATA_VERSION,
        device_id=device.id,
    )
    return SyncDataPackage(
        metadata=metadata,
        device=device,
        categories=categories,
        bookmarks=bookmarks,
        settings=settings,
        schema_version=DATA_VERSION,
        created_at=created_at if created_at is not None else now_ms(),
    )


def build_collection_package(
    kind: str,
    payload: Any,
    device: DeviceInfo,
    *,
    local_timestamp: int = 0,
    remote_timestamp: int = 0,
    last_sync_time: int = 0,
) -> SyncDataPackage:
    if kind not in COLLECTIONS:
        raise ValueError(f"unknown_collection: {kind}")
    return build_package(
        device,
        local_timestamp=local_timestamp,
        remote_timestamp=remote_timestamp,
        last_sync_time=last_sync_time,
        **{kind: payload if payload is not None else ({} if kind == "settings" else [])},
    )


def decode_package(raw: bytes, device_id: str, fallback_timestamp: int | None = None) -> SyncDataPackage:
    """Parse a remote resource into a package.

    Unreadable content raises IntegrityError. Broken metadata is repaired from
    the payload. Settings are normalized after the integrity check so a correct
    legacy or sparse file is re-stamped rather than flagged as tampered.
    """
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise IntegrityError(f"payload_unreadable: {e}") from e
    if not isinstance(data, dict):
        raise IntegrityError("payload_not_an_object")

    for name in ("categories", "bookmarks"):
        value = data.get(name)
        if value is not None and not isinstance(value, list):
            raise IntegrityError(f"payload_invalid_{name}")
    if data.get("settings") is not None and not isinstance(data.get("settings"), dict):
        raise IntegrityError("payload_invalid_settings")

    meta_raw = data.get("metadata")
    problems = metadata_problems(meta_raw)
    if problems:
        payload_hash = hash_dataset(data.get("categories"), data.get("bookmarks"), data.get("settings"))
        repaired = repair_metadata(meta_raw, payload_hash, device_id, fallback_timestamp)
        logger.warning("remote_metadata_repaired problems=%s", ",".join(problems))
        data["metadata"] = repaired.to_wire()

    if not isinstance(data.get("device"), dict):
        data["device"] = {"id": data["metadata"].get("deviceId") or device_id, "name": "unknown"}

    try:
        package = SyncDataPackage.model_validate(data)
    except ValidationError as e:
        raise IntegrityError(f"payload_invalid: {e.error_count()} errors") from e

    if package.settings is not None:
        try:
            settings = normalize_settings_payload(package.settings)
        except CorruptMetadataError as e:
            raise IntegrityError(f"payload_settings_unusable: {e}") from e
        # Stamped with the digest of the normalized form, the one local copies carry.
        if settings != package.settings:
            logger.info(
                "remote_settings_%s",
                "migrated" if needs_migration(package.settings) else "normalized",
            )
            intact = verify_package(package)
            package = package.model_copy(update={"settings": settings})
            if intact:
                meta = package.metadata.model_copy(
                    update={"data_hash": hash_dataset(package.categories, package.bookmarks, settings)}
                )
                package = package.model_copy(update={"metadata": meta})
    return package


class MetadataStore:
    """Per-collection sync bookkeeping kept in LocalStore metadata values."""

    def __init__(self, local_store: LocalStore):
        self.local_store = local_store

    def get_local_modified_time(self, kind: str) -> int:
        return int(self.local_store.get_collection_modified_time(kind) or 0)

    def set_local_modified_time(self, kind: str, timestamp: int) -> None:
        self.local_store.set_collection_modified_time(kind, int(timestamp))

    def _raw(self, kind: str) -> object:
        text = self.local_store.get_value(SYNC_METADATA_KEY.format(kind))
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    def load(self, kind: str) -> SyncMetadata | None:
        raw = self._raw(kind)
        if raw is None:
            return None
        problems = metadata_problems(raw)
        if problems:
            raise CorruptMetadataError(f"metadata_corrupt kind={kind} problems={','.join(problems)}")
        return SyncMetadata.model_validate(raw)

    def save(self, kind: str, metadata: SyncMetadata, remote_observed: int | None = None) -> None:
        self.local_store.set_value(SYNC_METADATA_KEY.format(kind), json.dumps(metadata.to_wire()))
        self.local_store.set_value(
            REMOTE_OBSERVED_KEY.format(kind),
            str(remote_observed) if remote_observed is not None else None,
        )

    def get_remote_observed(self, kind: str) -> int | None:
        text = self.local_store.get_value(REMOTE_OBSERVED_KEY.format(kind))
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            return None

    def repair(self, kind: str, package: SyncDataPackage) -> SyncMetadata:
        """Regenerate stored metadata from the current local payload."""
        raw = self._raw(kind)
        repaired = repair_metadata(raw, package.metadata.data_hash, package.device.id, fallback_timestamp=0)
        # Drop the observed remote time too, so the next item check reads the remote copy.
        self.save(kind, repaired, remote_observed=None)
        logger.warning("local_metadata_repaired kind=%s", kind)
        return repaired

    def clear(self, kind: str) -> None:
        self.local_store.set_value(SYNC_METADATA_KEY.format(kind), None)
        self.local_store.set_value(REMOTE_OBSERVED_KEY.format(kind), None)

    def is_first_time_sync(self) -> bool:
        return all(self._raw(kind) is None for kind in COLLECTIONS)

    def summary(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for kind in COLLECTIONS:
            entry: dict[str, Any] = {
                "local_modified_at": iso_from_ms(self.get_local_modified_time(kind) or None),
                "remote_observed_at": iso_from_ms(self.get_remote_observed(kind)),
            }
            try:
                meta = self.load(kind)
            except CorruptMetadataError as e:
                entry["error"] = str(e)
                meta = None
            if meta is not None:
                entry.update(
                    {
                        "last_sync_at": iso_from_ms(meta.last_sync_time or None),
                        "data_hash": meta.data_hash[:12],
                        "device_id": meta.device_id,
                        "schema_version": meta.schema_version,
                    }
                )
            out[kind] = entry
        return out
