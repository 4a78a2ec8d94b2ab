import pytest

from bookmarksync.core.errors import CorruptMetadataError
from bookmarksync.sync.settings_schema import (
    CURRENT_SETTINGS_VERSION,
    DEFAULT_SETTINGS,
    migrate_settings,
    needs_migration,
    normalize_settings_payload,
)


def test_legacy_settings_are_migrated_and_filled():
    legacy = {
        "preferences": {"searchEngine": "bing", "autoFocusSearch": True, "dateFormat": "iso"},
        "bookmarks": {"categories": {"layout": "tabs", "sidebarVisible": "auto"}},
    }
    assert needs_migration(legacy)

    payload = normalize_settings_payload(legacy)

    assert payload["_version"] == CURRENT_SETTINGS_VERSION
    assert payload["preferences"]["searchEngine"] == "bing"
    assert "autoFocusSearch" not in payload["preferences"]
    assert "dateFormat" not in payload["preferences"]
    assert payload["bookmarks"]["categories"] == {"sidebarVisible": "auto"}
    assert payload["bookmarks"]["grid"] == DEFAULT_SETTINGS["bookmarks"]["grid"]
    assert not needs_migration(payload)


def test_current_version_with_retired_keys_is_cleaned():
    blob = {"_version": "2.0.0", "bookmarks": {"behavior": {"enableDrag": True, "openIn": "same"}}}
    assert needs_migration(blob)
    payload = normalize_settings_payload(blob)
    assert payload["bookmarks"]["behavior"] == {"openIn": "same", "hoverScale": 1.05}


def test_empty_settings_normalize_to_defaults():
    payload = normalize_settings_payload({})
    assert payload["sync"] == DEFAULT_SETTINGS["sync"]
    assert normalize_settings_payload(None) == payload


def test_unknown_version_is_rejected():
    with pytest.raises(CorruptMetadataError):
        migrate_settings({"_version": "9.9.9"})


def test_wrong_section_type_is_rejected():
    with pytest.raises(CorruptMetadataError):
        migrate_settings({"_version": "2.0.0", "preferences": "dark"})
