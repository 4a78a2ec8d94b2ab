from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from bookmarksync.core.config import WebDAVConfig
from bookmarksync.core.errors import AuthError, NetworkError, SyncError

from .client import WebDAVClient

logger = logging.getLogger("webdav")


class WebDAVRemoteStore:
    """Async RemoteStore over the blocking WebDAV client.

    Every call runs in a worker thread under a timeout. NetworkError (timeouts
    included) is retried with exponential backoff; anything else surfaces
    immediately.
    """

    def __init__(
        self,
        client: WebDAVClient,
        timeout_sec: float = 30,
        max_retries: int = 3,
        retry_base_delay_sec: float = 1.0,
        retry_max_delay_sec: float = 30.0,
    ):
        self.client = client
        self.timeout_sec = timeout_sec
        self.max_retries = max_retries
        self.retry_base_delay_sec = retry_base_delay_sec
        self.retry_max_delay_sec = retry_max_delay_sec

    @classmethod
    def from_config(cls, cfg: WebDAVConfig) -> "WebDAVRemoteStore":
        client = WebDAVClient(
            server_url=cfg.server_url,
            username=cfg.username,
            password=cfg.password,
            timeout=int(cfg.timeout_sec),
            verify=cfg.verify_tls,
        )
        return cls(
            client,
            timeout_sec=float(cfg.timeout_sec),
            max_retries=int(cfg.max_retries),
            retry_base_delay_sec=float(cfg.retry_base_delay_sec),
        )

    async def _call(self, op: str, func: Callable[..., Any], *args: Any) -> Any:
        error = NetworkError(f"webdav_not_attempted op={op}")
        for attempt in range(self.max_retries + 1):
            try:
                return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout_sec)
            except asyncio.TimeoutError:
                error = NetworkError(f"webdav_timeout op={op} timeout_sec={self.timeout_sec}")
            except NetworkError as e:
                error = e
            if attempt >= self.max_retries:
                break
            delay = min(self.retry_base_delay_sec * (2**attempt), self.retry_max_delay_sec)
            logger.warning("webdav_retry op=%s attempt=%s delay_sec=%.1f error=%s", op, attempt + 1, delay, error)
            await asyncio.sleep(delay)
        logger.error("webdav_retries_exhausted op=%s attempts=%s error=%s", op, self.max_retries + 1, error)
        raise error

    async def exists(self, path: str) -> bool:
        return await self._call("exists", self.client.exists, path)

    async def get_last_modified(self, path: str) -> int | None:
        return await self._call("get_last_modified", self.client.get_last_modified, path)

    async def read_file(self, path: str) -> bytes:
        return await self._call("read_file", self.client.get, path)

    async def write_file(self, path: str, data: bytes) -> bool:
        await self._call("write_file", self.client.put, path, data)
        return True

    async def ensure_directory(self, path: str) -> bool:
        await self._call("ensure_directory", self.client.ensure_directory, path)
        return True

    async def check_connection(self, path: str) -> dict[str, Any]:
        """PROPFIND `path` once and classify the outcome.

        status is one of ok, auth_failed, network_error or error. A missing
        `path` still counts as ok; the first cycle creates it.
        """
        report: dict[str, Any] = {"ok": False, "status": "error", "error": None, "path_exists": None}
        try:
            info = await asyncio.wait_for(asyncio.to_thread(self.client.stat, path), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            report.update(status="network_error", error=f"webdav_timeout timeout_sec={self.timeout_sec}")
        except AuthError as e:
            report.update(status="auth_failed", error=str(e))
        except NetworkError as e:
            report.update(status="network_error", error=str(e))
        except SyncError as e:
            report.update(error=str(e))
        else:
            report.update(ok=True, status="ok", path_exists=info is not None)
        logger.info("webdav_connection_checked path=%s status=%s", path, report["status"])
        return report
