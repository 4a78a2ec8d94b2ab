from __future__ import annotations

import hashlib
import json
from typing import Any

from bookmarksync.sync.models import SyncDataPackage, bookmark_key, category_key


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def hash_payload(payload: Any) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def _ordered(records: list[dict[str, Any]], key_func) -> list[dict[str, Any]]:
    # Record key first, full canonical text as tie-breaker for unkeyed records.
    return sorted(records, key=lambda r: (key_func(r), canonical_json(r)))


def hash_dataset(
    categories: list[dict[str, Any]] | None = None,
    bookmarks: list[dict[str, Any]] | None = None,
    settings: dict[str, Any] | None = None,
) -> str:
    """Digest over the collections passed in; None means "not carried".

    Top-level records are ordered by their key so list order does not change
    the digest. Lists nested inside a record (category members) keep their
    order.
    """
    canonical: dict[str, Any] = {}
    if categories is not None:
        canonical["categories"] = _ordered(categories, category_key)
    if bookmarks is not None:
        canonical["bookmarks"] = _ordered(bookmarks, bookmark_key)
    if settings is not None:
        canonical["settings"] = settings
    return hash_payload(canonical)


def hash_package(package: SyncDataPackage) -> str:
    return hash_dataset(package.categories, package.bookmarks, package.settings)


def verify_package(package: SyncDataPackage) -> bool:
    return bool(package.metadata.data_hash) and package.metadata.data_hash == hash_package(package)
