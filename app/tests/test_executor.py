import asyncio

import pytest

from bookmarksync.core.errors import IntegrityError
from bookmarksync.sync.executor import SyncExecutor, plan_direction
from bookmarksync.sync.metadata import build_collection_package
from bookmarksync.sync.models import SyncItem

from fakes import BASE_PATH, REMOTE_DEVICE, T0, FakeRemoteStore, bookmark, remote_package, remote_path


def _local_package(ts=T0 + 10_000):
    return build_collection_package("bookmarks", [bookmark("https://local.example", "L")], REMOTE_DEVICE, local_timestamp=ts)


def test_plan_direction():
    assert plan_direction(SyncItem(id="b", kind="bookmarks", local_modified_at=5)) == "upload"
    assert plan_direction(SyncItem(id="b", kind="bookmarks", local_modified_at=5, remote_modified_at=3)) == "upload"
    assert plan_direction(SyncItem(id="b", kind="bookmarks", local_modified_at=3, remote_modified_at=5)) == "download"
    assert plan_direction(SyncItem(id="b", kind="bookmarks", local_modified_at=5, remote_modified_at=5)) == "noop"
    assert plan_direction(SyncItem(id="b", kind="bookmarks", remote_modified_at=5, direction="download")) == "download"
    assert plan_direction(SyncItem(id="b", kind="bookmarks", remote_modified_at=5)) == "upload"


def test_upload_stamps_remote_with_content_time():
    remote = FakeRemoteStore()
    executor = SyncExecutor(remote, BASE_PATH, device_id="device_me")
    item = SyncItem(id="bookmarks", kind="bookmarks", local_modified_at=T0 + 10_000)

    result = asyncio.run(executor.run(item, _local_package()))

    assert result.action == "upload"
    assert remote.writes == [remote_path("bookmarks")]
    stored = remote.load_json("bookmarks")
    assert stored["metadata"]["remoteTimestamp"] == T0 + 10_000
    assert [b["url"] for b in stored["bookmarks"]] == ["https://local.example"]


def test_upload_switches_to_download_when_remote_moved():
    remote = FakeRemoteStore()
    remote.put_package("bookmarks", remote_package("bookmarks", [bookmark("https://other.example", "O")], T0), mtime=T0 + 5000)
    executor = SyncExecutor(remote, BASE_PATH, device_id="device_me", race_tolerance_ms=1000)
    # Cycle start saw the file at T0; it has since moved by 5s.
    item = SyncItem(id="bookmarks", kind="bookmarks", local_modified_at=T0 + 10_000, remote_observed_at=T0)

    result = asyncio.run(executor.run(item, _local_package()))

    assert result.action == "download"
    assert remote.writes == []
    assert [b["url"] for b in result.payload.bookmarks] == ["https://other.example"]


def test_upload_proceeds_within_tolerance():
    remote = FakeRemoteStore()
    remote.put_package("bookmarks", remote_package("bookmarks", [], T0), mtime=T0 + 500)
    executor = SyncExecutor(remote, BASE_PATH, device_id="device_me", race_tolerance_ms=1000)
    item = SyncItem(id="bookmarks", kind="bookmarks", local_modified_at=T0 + 10_000, remote_observed_at=T0)

    assert asyncio.run(executor.run(item, _local_package())).action == "upload"


def test_resource_appearing_mid_cycle_counts_as_race():
    remote = FakeRemoteStore()
    remote.put_package("bookmarks", remote_package("bookmarks", [], T0))
    executor = SyncExecutor(remote, BASE_PATH, device_id="device_me")
    item = SyncItem(id="bookmarks", kind="bookmarks", local_modified_at=T0 + 10_000, remote_observed_at=None)

    assert asyncio.run(executor.run(item, _local_package())).action == "download"


def test_download_rejects_tampered_payload():
    remote = FakeRemoteStore()
    tampered = remote_package("bookmarks", [bookmark("https://a.example", "A")], T0).model_copy(update={"bookmarks": []})
    remote.put_package("bookmarks", tampered)
    executor = SyncExecutor(remote, BASE_PATH, device_id="device_me")
    item = SyncItem(id="bookmarks", kind="bookmarks", local_modified_at=T0, remote_modified_at=T0 + 1000)

    with pytest.raises(IntegrityError):
        asyncio.run(executor.run(item, _local_package(T0)))
