from bookmarksync.sync.conflict_detector import auto_strategy, conflict_stats, detect, is_logically_empty, recommended_strategy
from bookmarksync.sync.metadata import build_collection_package
from bookmarksync.sync.models import ConflictRecord, SyncItem

from fakes import REMOTE_DEVICE, T0, bookmark, category, remote_package


def _local(kind, payload, ts):
    return build_collection_package(kind, payload, REMOTE_DEVICE, local_timestamp=ts)


def test_absent_sides():
    local = _local("bookmarks", [bookmark("https://a.example", "A")], T0)
    assert detect(local, None).use_local
    assert detect(None, local).use_remote


def test_empty_local_does_not_win_over_populated_remote():
    local = _local("bookmarks", [], T0 + 100)
    remote = remote_package("bookmarks", [bookmark("https://a.example", "A")], T0)

    decision = detect(local, remote)

    assert decision.use_remote
    assert decision.reason == "timestamp_trap"


def test_settings_package_is_never_logically_empty():
    settings_pkg = _local("settings", {}, T0 + 100)
    assert not is_logically_empty(settings_pkg)
    assert is_logically_empty(_local("categories", [], T0))


def test_newer_side_wins_outside_tie_window():
    local = _local("bookmarks", [bookmark("https://a.example", "A")], T0 + 5000)
    remote = remote_package("bookmarks", [bookmark("https://b.example", "B")], T0)

    assert detect(local, remote, tie_window_ms=1000).reason == "local_newer"

    older = _local("bookmarks", [bookmark("https://a.example", "A")], T0 - 5000)
    assert detect(older, remote, tie_window_ms=1000).reason == "remote_newer"


def test_same_instant_same_content_is_noop():
    records = [bookmark("https://a.example", "A")]
    local = _local("bookmarks", records, T0 + 200)
    remote = remote_package("bookmarks", records, T0)

    assert detect(local, remote, tie_window_ms=1000).noop


def test_same_instant_different_content_is_data_conflict():
    local = _local("categories", [category("Work", ["x"], color="blue")], T0 + 200)
    remote = remote_package("categories", [category("Work", ["y"], color="red")], T0)

    decision = detect(local, remote, tie_window_ms=1000)

    assert decision.conflict
    assert decision.kind == "data_conflict"
    # Without a window the later timestamp decides.
    assert detect(local, remote).use_local


def test_integrity_failures():
    good = _local("bookmarks", [bookmark("https://a.example", "A")], T0)
    bad_remote = remote_package("bookmarks", [bookmark("https://b.example", "B")], T0 + 9000)
    bad_remote = bad_remote.model_copy(update={"bookmarks": []})
    bad_local = good.model_copy(update={"bookmarks": []})

    assert detect(good, bad_remote).reason == "remote_corrupt"
    assert detect(bad_local, remote_package("bookmarks", [], T0)).reason == "local_corrupt"
    both = detect(bad_local, bad_remote)
    assert both.conflict and both.kind == "hash_mismatch"


def _record(kind, local_count, remote_count):
    local = _local("bookmarks", [bookmark(f"https://l{i}.example", "L") for i in range(local_count)], T0)
    remote = remote_package("bookmarks", [bookmark(f"https://r{i}.example", "R") for i in range(remote_count)], T0)
    return ConflictRecord(
        item=SyncItem(id="bookmarks", kind="bookmarks"),
        local_payload=local,
        remote_payload=remote,
        kind=kind,
        detected_at=T0,
    )


def test_strategy_recommendations():
    assert recommended_strategy(_record("data_conflict", 2, 2)) == "merge"
    assert recommended_strategy(_record("hash_mismatch", 2, 2)) == "manual"
    assert auto_strategy(_record("data_conflict", 10, 2)) == "use_local"
    assert auto_strategy(_record("data_conflict", 1, 5)) == "use_remote"
    assert auto_strategy(_record("data_conflict", 3, 4)) == "merge"


def test_conflict_stats():
    stats = conflict_stats([_record("data_conflict", 1, 1), _record("hash_mismatch", 1, 1)])
    assert stats["total"] == 2
    assert stats["by_kind"] == {"data_conflict": 1, "hash_mismatch": 1}
    assert stats["by_collection"] == {"bookmarks": 2}
