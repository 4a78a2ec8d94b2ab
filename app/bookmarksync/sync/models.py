from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bookmarksync.core.timeutil import parse_timestamp_ms

DATA_VERSION = "2.0.0"

# Fixed processing order: settings last, they may reference categories/bookmarks.
COLLECTIONS: tuple[str, ...] = ("bookmarks", "categories", "settings")

CollectionName = Literal["bookmarks", "categories", "settings"]
ConflictKind = Literal["data_conflict", "timestamp_conflict", "hash_mismatch"]
Direction = Literal["upload", "download", "bidirectional"]
ItemStatus = Literal["pending", "syncing", "uploaded", "downloaded", "noop", "conflict", "error"]
CycleState = Literal["idle", "preparing", "comparing", "transferring", "success", "conflict", "error"]
ResultStatus = Literal["success", "conflict", "error"]


class WireModel(BaseModel):
    """Models persisted to the remote store; JSON keys are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SyncMetadata(WireModel):
    last_sync_time: int = 0
    local_timestamp: int = 0
    remote_timestamp: int = 0
    data_hash: str = ""
    schema_version: str = DATA_VERSION
    device_id: str = ""


class DeviceInfo(WireModel):
    id: str
    name: str
    platform: str = "Unknown"
    browser: str = ""
    created_at: int = 0
    last_active_at: int = 0


class SyncDataPackage(WireModel):
    metadata: SyncMetadata
    device: DeviceInfo
    # None means the package does not carry that collection.
    categories: list[dict[str, Any]] | None = None
    bookmarks: list[dict[str, Any]] | None = None
    settings: dict[str, Any] | None = None
    schema_version: str = DATA_VERSION
    created_at: int = 0

    def carried(self) -> tuple[str, ...]:
        return tuple(name for name in COLLECTIONS if getattr(self, name) is not None)

    def collection(self, name: str) -> Any:
        return getattr(self, name)

    def record_count(self) -> int:
        return len(self.categories or []) + len(self.bookmarks or [])

    def to_wire(self) -> dict[str, Any]:
        data = super().to_wire()
        for name in COLLECTIONS:
            if data.get(name) is None:
                data.pop(name, None)
        return data

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_wire(), ensure_ascii=False, indent=2).encode("utf-8")


class SyncItem(BaseModel):
    id: str
    kind: CollectionName
    local_modified_at: int | None = None
    remote_modified_at: int | None = None
    # Server-side last-modified seen when the cycle started; race guard baseline.
    remote_observed_at: int | None = None
    status: ItemStatus = "pending"
    direction: Direction = "bidirectional"
    error: str | None = None


class ConflictRecord(BaseModel):
    item: SyncItem
    local_payload: SyncDataPackage | None = None
    remote_payload: SyncDataPackage | None = None
    kind: ConflictKind
    detected_at: int
    resolution: str | None = None


class Decision(BaseModel):
    action: Literal["use_local", "use_remote", "noop", "conflict"]
    kind: ConflictKind | None = None
    reason: str = ""

    @property
    def use_local(self) -> bool:
        return self.action == "use_local"

    @property
    def use_remote(self) -> bool:
        return self.action == "use_remote"

    @property
    def noop(self) -> bool:
        return self.action == "noop"

    @property
    def conflict(self) -> bool:
        return self.action == "conflict"


class SyncProgress(BaseModel):
    status: CycleState = "idle"
    total_items: int = 0
    completed_items: int = 0
    current_item_name: str | None = None
    started_at: int | None = None
    error: str | None = None


class SyncResult(BaseModel):
    status: ResultStatus
    message: str = ""
    error: str | None = None
    timestamp: int
    items: list[SyncItem] = Field(default_factory=list)
    conflict_count: int = 0
    duration_ms: int = 0


class SyncHistoryEntry(BaseModel):
    id: str
    timestamp: int
    status: ResultStatus
    item_count: int = 0
    duration_ms: int = 0
    conflict_count: int = 0
    error: str | None = None


def normalize_key(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(value.split()).casefold()


def bookmark_key(record: dict[str, Any]) -> str:
    return normalize_key(record.get("url"))


def category_key(record: dict[str, Any]) -> str:
    return normalize_key(record.get("name"))


def record_updated_ms(record: dict[str, Any]) -> int:
    for field in ("updatedAt", "updated_at", "createdAt", "created_at"):
        ts = parse_timestamp_ms(record.get(field))
        if ts is not None:
            return ts
    return 0


def collection_modified_ms(records: list[dict[str, Any]] | None) -> int:
    """Latest updatedAt/createdAt across a collection, 0 when empty."""
    return max((record_updated_ms(r) for r in records or []), default=0)
