from __future__ import annotations

import asyncio
import copy
import json
from typing import Any

from bookmarksync.sync.metadata import build_collection_package
from bookmarksync.sync.models import DeviceInfo, SyncDataPackage
from bookmarksync.sync.stores import RESOURCE_NAMES, join_remote_path

BASE_PATH = "/BookmarkSync"
T0 = 1_700_000_000_000

REMOTE_DEVICE = DeviceInfo(id="device_remote00000000", name="Linux - other (laptop)", platform="Linux")


def remote_path(kind: str) -> str:
    return join_remote_path(BASE_PATH, RESOURCE_NAMES[kind])


def bookmark(url: str, title: str, updated_at: int = T0) -> dict[str, Any]:
    return {"id": "bm_" + url.split("//")[-1].strip("/").replace("/", "_"), "url": url, "title": title, "updatedAt": updated_at}


def category(name: str, members: list[str], color: str = "#336699", updated_at: int = T0) -> dict[str, Any]:
    return {"id": f"cat_{name.lower()}", "name": name, "color": color, "bookmarks": list(members), "updatedAt": updated_at}


class FakeRemoteStore:
    """In-memory RemoteStore. Every write advances a fake server clock by one second."""

    def __init__(self, clock: int = T0):
        self.files: dict[str, bytes] = {}
        self.mtimes: dict[str, int] = {}
        self.clock = clock
        self.directories: list[str] = []
        self.writes: list[str] = []
        self.reads: list[str] = []
        # When set, ensure_directory blocks until the event fires; holds a cycle open.
        self.gate: asyncio.Event | None = None

    def put(self, path: str, data: bytes, mtime: int | None = None) -> None:
        self.clock += 1000
        self.files[path] = data
        self.mtimes[path] = mtime if mtime is not None else self.clock

    def put_package(self, kind: str, package: SyncDataPackage, mtime: int | None = None) -> None:
        self.put(remote_path(kind), package.to_bytes(), mtime)

    def load_json(self, kind: str) -> dict[str, Any]:
        return json.loads(self.files[remote_path(kind)].decode("utf-8"))

    async def exists(self, path: str) -> bool:
        return path in self.files

    async def get_last_modified(self, path: str) -> int | None:
        return self.mtimes.get(path)

    async def read_file(self, path: str) -> bytes:
        self.reads.append(path)
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def write_file(self, path: str, data: bytes) -> bool:
        self.writes.append(path)
        self.put(path, data)
        return True

    async def ensure_directory(self, path: str) -> bool:
        self.directories.append(path)
        if self.gate is not None:
            await self.gate.wait()
        return True

    async def check_connection(self, path: str) -> dict[str, Any]:
        return {"ok": True, "status": "ok", "error": None, "path_exists": path in self.directories}


class FakeLocalStore:
    def __init__(self, dataset: dict[str, Any] | None = None, mtimes: dict[str, int] | None = None):
        self.dataset: dict[str, Any] = {"categories": [], "bookmarks": [], "settings": {}}
        self.dataset.update(copy.deepcopy(dataset or {}))
        self.mtimes: dict[str, int] = dict(mtimes or {})
        self.values: dict[str, str] = {}

    def load_dataset(self) -> dict[str, Any]:
        return copy.deepcopy(self.dataset)

    def save_dataset(self, dataset: dict[str, Any]) -> bool:
        for name, value in dataset.items():
            self.dataset[name] = copy.deepcopy(value)
        return True

    def get_collection_modified_time(self, collection: str) -> int:
        return self.mtimes.get(collection, 0)

    def set_collection_modified_time(self, collection: str, timestamp: int) -> bool:
        self.mtimes[collection] = timestamp
        return True

    def get_value(self, key: str) -> str | None:
        return self.values.get(key)

    def set_value(self, key: str, value: str | None) -> None:
        if value is None:
            self.values.pop(key, None)
        else:
            self.values[key] = value


def remote_package(kind: str, payload: Any, timestamp: int) -> SyncDataPackage:
    return build_collection_package(
        kind,
        payload,
        REMOTE_DEVICE,
        local_timestamp=timestamp,
        remote_timestamp=timestamp,
        last_sync_time=timestamp,
    )
