from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bookmarksync.core.errors import CorruptMetadataError

logger = logging.getLogger("sync")

CURRENT_SETTINGS_VERSION = "2.0.0"
LEGACY_SETTINGS_VERSION = "1.0.0"

DEFAULT_SETTINGS: dict[str, Any] = {
    "preferences": {
        "searchEngine": "google",
        "timeFormat": "24h",
        "openInNewTab": True,
    },
    "bookmarks": {
        "display": {
            "iconSize": 32,
            "showTitle": True,
            "itemsPerRow": "auto",
            "cardSpacing": 8,
            "cardPadding": 12,
            "showFavicons": True,
            "showDescriptions": False,
        },
        "behavior": {
            "openIn": "new",
            "hoverScale": 1.05,
        },
        "grid": {
            "columns": "auto",
            "aspectRatio": "1/1",
            "responsive": True,
            "minCardWidth": 100,
            "maxCardWidth": 160,
        },
        "categories": {
            "sidebarVisible": "always",
        },
    },
    "background": {
        "type": "gradient",
    },
    "sync": {
        "enabled": False,
        "autoSyncInterval": 30,
    },
}

# Keys dropped in 2.0.0; their behavior became fixed.
RETIRED_KEYS_2_0_0: dict[tuple[str, ...], tuple[str, ...]] = {
    ("preferences",): ("autoFocusSearch", "dateFormat", "showSeconds"),
    ("bookmarks", "behavior"): ("enableDrag", "enableHover", "clickAnimation"),
    ("bookmarks", "categories"): ("layout", "style", "showEmpty", "enableSort", "tabPosition", "sidebarWidth"),
}


class SettingsBlob(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: str = Field(default=CURRENT_SETTINGS_VERSION, alias="_version")
    preferences: dict[str, Any] = Field(default_factory=dict)
    bookmarks: dict[str, Any] = Field(default_factory=dict)
    background: dict[str, Any] = Field(default_factory=dict)
    sync: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _section(data: dict[str, Any], path: tuple[str, ...]) -> dict[str, Any] | None:
    node: Any = data
    for part in path:
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node if isinstance(node, dict) else None


def _has_retired_keys(data: dict[str, Any]) -> bool:
    for path, keys in RETIRED_KEYS_2_0_0.items():
        section = _section(data, path)
        if section and any(k in section for k in keys):
            return True
    return False


def _migrate_1_0_0(data: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(data)
    removed: list[str] = []
    for path, keys in RETIRED_KEYS_2_0_0.items():
        section = _section(out, path)
        if not section:
            continue
        for key in keys:
            if key in section:
                section.pop(key)
                removed.append(".".join((*path, key)))
    out["_version"] = "2.0.0"
    if removed:
        logger.info("settings_migrated from=1.0.0 to=2.0.0 removed=%s", ",".join(removed))
    return out


# version -> (next version, step)
MIGRATIONS: dict[str, tuple[str, Callable[[dict[str, Any]], dict[str, Any]]]] = {
    LEGACY_SETTINGS_VERSION: ("2.0.0", _migrate_1_0_0),
}


def settings_version(raw: dict[str, Any] | None) -> str:
    value = (raw or {}).get("_version")
    return value if isinstance(value, str) and value else LEGACY_SETTINGS_VERSION


def needs_migration(raw: dict[str, Any] | None) -> bool:
    data = raw or {}
    return settings_version(data) != CURRENT_SETTINGS_VERSION or _has_retired_keys(data)


def migrate_settings(raw: dict[str, Any] | None) -> SettingsBlob:
    """Bring a settings blob of any known version to the current schema.

    Missing fields are filled from DEFAULT_SETTINGS so that two blobs with the
    same user choices always hash identically.
    """
    if raw is not None and not isinstance(raw, dict):
        raise CorruptMetadataError("settings_not_an_object")
    data = copy.deepcopy(raw or {})
    version = settings_version(data)
    while version != CURRENT_SETTINGS_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise CorruptMetadataError(f"unknown_settings_version: {version}")
        version, func = step
        data = func(data)
    # A current-version blob can still carry retired keys written by an older client.
    if _has_retired_keys(data):
        data = _migrate_1_0_0(data)

    merged = _deep_merge(DEFAULT_SETTINGS, {k: v for k, v in data.items() if k != "_version"})
    merged["_version"] = CURRENT_SETTINGS_VERSION
    try:
        return SettingsBlob.model_validate(merged)
    except ValidationError as e:
        raise CorruptMetadataError(f"invalid_settings: {e.error_count()} errors") from e


def normalize_settings_payload(raw: dict[str, Any] | None) -> dict[str, Any]:
    return migrate_settings(raw).to_payload()
