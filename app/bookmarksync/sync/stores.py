from __future__ import annotations

from typing import Any, Protocol


class RemoteStore(Protocol):
    async def exists(self, path: str) -> bool: ...

    async def get_last_modified(self, path: str) -> int | None:
        """Epoch milliseconds, or None when the resource does not exist."""
        ...

    async def read_file(self, path: str) -> bytes: ...

    async def write_file(self, path: str, data: bytes) -> bool: ...

    async def ensure_directory(self, path: str) -> bool: ...

    async def check_connection(self, path: str) -> dict[str, Any]:
        """Single attempt against `path`, no retries: {"ok", "status", "error", "path_exists"}."""
        ...


class LocalStore(Protocol):
    def load_dataset(self) -> dict[str, Any]:
        """Return {"categories": [...], "bookmarks": [...], "settings": {...}}."""
        ...

    def save_dataset(self, dataset: dict[str, Any]) -> bool: ...

    def get_collection_modified_time(self, collection: str) -> int: ...

    def set_collection_modified_time(self, collection: str, timestamp: int) -> bool: ...

    def get_value(self, key: str) -> str | None: ...

    def set_value(self, key: str, value: str | None) -> None: ...


RESOURCE_NAMES = {
    "bookmarks": "bookmarks.json",
    "categories": "categories.json",
    "settings": "settings.json",
}


def join_remote_path(base_path: str, name: str) -> str:
    base = "/" + (base_path or "").strip("/")
    if base == "/":
        return f"/{name.lstrip('/')}"
    return f"{base}/{name.lstrip('/')}"
