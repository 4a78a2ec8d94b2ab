from __future__ import annotations

import hashlib
import json
import logging
import os
import platform
import socket
import uuid

from pydantic import ValidationError

from bookmarksync import __version__
from bookmarksync.core.timeutil import now_ms
from bookmarksync.sync.models import DeviceInfo
from bookmarksync.sync.stores import LocalStore

logger = logging.getLogger("sync")

DEVICE_INFO_KEY = "device_info"


def detect_platform(system: str | None = None) -> str:
    raw = (system if system is not None else platform.system()) or ""
    name = raw.strip().lower()
    if name.startswith("win") or name.startswith("cygwin"):
        return "Windows"
    if name == "darwin" or name == "macos":
        return "macOS"
    if name == "ios" or name == "ipados":
        return "iOS"
    if name == "android":
        return "Android"
    if name in ("cros", "chrome os", "chromeos"):
        return "Chrome OS"
    if name == "linux":
        if "ANDROID_ROOT" in os.environ:
            return "Android"
        return "Linux"
    return "Unknown"


def device_fingerprint() -> str:
    parts = [
        socket.gethostname(),
        platform.system(),
        platform.machine(),
        platform.python_implementation(),
        str(uuid.getnode()),
    ]
    return "|".join(parts)


def generate_device_id(fingerprint: str | None = None) -> str:
    fp = fingerprint if fingerprint is not None else device_fingerprint()
    return "device_" + hashlib.sha256(fp.encode("utf-8")).hexdigest()[:16]


def default_device_name(platform_name: str, client_name: str, hostname: str | None = None) -> str:
    host = hostname if hostname is not None else socket.gethostname()
    return f"{platform_name} - {client_name} ({host or 'unknown'})"


class DeviceIdentity:
    """Device descriptor created once per installation and kept in the LocalStore."""

    def __init__(self, local_store: LocalStore, name: str = "", client_name: str = "bookmarksync"):
        self.local_store = local_store
        self.name_override = (name or "").strip()
        self.client_name = client_name or "bookmarksync"
        self._cached: DeviceInfo | None = None

    def _load(self) -> DeviceInfo | None:
        raw = self.local_store.get_value(DEVICE_INFO_KEY)
        if not raw:
            return None
        try:
            return DeviceInfo.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("device_info_corrupt regenerating error=%s", e)
            return None

    def _save(self, info: DeviceInfo) -> None:
        self.local_store.set_value(DEVICE_INFO_KEY, json.dumps(info.to_wire(), ensure_ascii=False))
        self._cached = info

    def get(self) -> DeviceInfo:
        if self._cached is not None:
            return self._cached
        info = self._load()
        if info is None:
            ts = now_ms()
            platform_name = detect_platform()
            info = DeviceInfo(
                id=generate_device_id(),
                name=self.name_override or default_device_name(platform_name, self.client_name),
                platform=platform_name,
                browser=f"{self.client_name}/{__version__}",
                created_at=ts,
                last_active_at=ts,
            )
            self._save(info)
            logger.info("device_registered id=%s name=%s", info.id, info.name)
            return info
        if self.name_override and info.name != self.name_override:
            info = info.model_copy(update={"name": self.name_override})
            self._save(info)
        self._cached = info
        return info

    def touch(self) -> DeviceInfo:
        info = self.get().model_copy(update={"last_active_at": now_ms()})
        self._save(info)
        return info
