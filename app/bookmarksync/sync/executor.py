from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from bookmarksync.core.errors import IntegrityError
from bookmarksync.core.timeutil import now_ms
from bookmarksync.sync.hashing import verify_package
from bookmarksync.sync.metadata import decode_package
from bookmarksync.sync.models import SyncDataPackage, SyncItem
from bookmarksync.sync.stores import RESOURCE_NAMES, RemoteStore, join_remote_path

logger = logging.getLogger("sync")

Action = Literal["upload", "download", "noop"]


@dataclass
class ExecutionResult:
    payload: SyncDataPackage
    changed: bool
    action: Action


def plan_direction(item: SyncItem) -> Action:
    """Pick the transfer for one item from its modification times.

    Missing remote time means upload. With both times known the newer side
    wins and equal times mean nothing to do. Anything else follows the
    item's declared direction.
    """
    if item.remote_modified_at is None:
        return "upload"
    if item.local_modified_at is not None:
        if item.local_modified_at > item.remote_modified_at:
            return "upload"
        if item.remote_modified_at > item.local_modified_at:
            return "download"
        return "noop"
    if item.direction == "download":
        return "download"
    return "upload"


class SyncExecutor:
    def __init__(self, remote: RemoteStore, base_path: str, device_id: str, race_tolerance_ms: int = 1000):
        self.remote = remote
        self.base_path = base_path
        self.device_id = device_id
        self.race_tolerance_ms = max(int(race_tolerance_ms), 0)

    def resource_path(self, kind: str) -> str:
        return join_remote_path(self.base_path, RESOURCE_NAMES[kind])

    def remote_advanced(self, observed: int | None, current: int | None) -> bool:
        if current is None:
            return False
        if observed is None:
            # Resource appeared after the cycle looked at it.
            return True
        return current - observed > self.race_tolerance_ms

    async def run(self, item: SyncItem, local_package: SyncDataPackage) -> ExecutionResult:
        action = plan_direction(item)
        path = self.resource_path(item.kind)
        current: int | None = item.remote_observed_at

        if action == "upload":
            current = await self.remote.get_last_modified(path)
            if self.remote_advanced(item.remote_observed_at, current):
                logger.warning(
                    "upload_race_detected kind=%s observed=%s current=%s switching=download",
                    item.kind,
                    item.remote_observed_at,
                    current,
                )
                action = "download"
            else:
                return await self._upload(item, path, local_package)

        if action == "download":
            return await self._download(item, path, current)

        logger.debug("item_noop kind=%s", item.kind)
        return ExecutionResult(payload=local_package, changed=False, action="noop")

    async def _upload(self, item: SyncItem, path: str, local_package: SyncDataPackage) -> ExecutionResult:
        meta = local_package.metadata.model_copy(
            update={
                # Remote copy is stamped with the content time, not the upload time.
                "remote_timestamp": local_package.metadata.local_timestamp,
                "last_sync_time": now_ms(),
            }
        )
        outgoing = local_package.model_copy(update={"metadata": meta})
        await self.remote.write_file(path, outgoing.to_bytes())
        logger.info("item_uploaded kind=%s hash=%s", item.kind, meta.data_hash[:12])
        return ExecutionResult(payload=outgoing, changed=False, action="upload")

    async def _download(self, item: SyncItem, path: str, observed: int | None) -> ExecutionResult:
        raw = await self.remote.read_file(path)
        package = decode_package(raw, self.device_id, fallback_timestamp=observed)
        if not verify_package(package):
            raise IntegrityError(f"hash_mismatch_after_download kind={item.kind}")
        if package.collection(item.kind) is None:
            raise IntegrityError(f"collection_missing_after_download kind={item.kind}")
        logger.info("item_downloaded kind=%s hash=%s", item.kind, package.metadata.data_hash[:12])
        return ExecutionResult(payload=package, changed=True, action="download")
