from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import Any
from urllib.parse import quote, unquote, urlparse

import requests

from bookmarksync.core.errors import AuthError, NetworkError, SyncError
from bookmarksync.core.timeutil import parse_http_date_ms

logger = logging.getLogger("webdav")

DAV_NS = "{DAV:}"

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:getlastmodified/><d:getcontentlength/><d:resourcetype/><d:getetag/>"
    "</d:prop></d:propfind>"
)


def parse_multistatus(content: bytes) -> list[dict[str, Any]]:
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise SyncError(f"webdav_invalid_multistatus: {e}") from e

    entries: list[dict[str, Any]] = []
    for response in root.iter(f"{DAV_NS}response"):
        href = response.findtext(f"{DAV_NS}href") or ""
        entry: dict[str, Any] = {
            "href": unquote(urlparse(href).path or href),
            "last_modified": None,
            "size": None,
            "etag": None,
            "is_collection": False,
        }
        for propstat in response.iter(f"{DAV_NS}propstat"):
            status = propstat.findtext(f"{DAV_NS}status") or ""
            if status and " 200 " not in f"{status} ":
                continue
            prop = propstat.find(f"{DAV_NS}prop")
            if prop is None:
                continue
            modified = prop.findtext(f"{DAV_NS}getlastmodified")
            if modified:
                entry["last_modified"] = parse_http_date_ms(modified)
            length = prop.findtext(f"{DAV_NS}getcontentlength")
            if length and length.strip().isdigit():
                entry["size"] = int(length.strip())
            etag = prop.findtext(f"{DAV_NS}getetag")
            if etag:
                entry["etag"] = etag.strip()
            resourcetype = prop.find(f"{DAV_NS}resourcetype")
            if resourcetype is not None and resourcetype.find(f"{DAV_NS}collection") is not None:
                entry["is_collection"] = True
        entries.append(entry)
    return entries


class WebDAVClient:
    def __init__(
        self,
        server_url: str,
        username: str = "",
        password: str = "",
        timeout: int = 30,
        verify: bool = True,
        session: requests.Session | None = None,
    ):
        self.server_url = (server_url or "").rstrip("/")
        self.timeout = timeout
        self.verify = verify
        self.session = session or requests.Session()
        if username:
            self.session.auth = (username, password or "")

    def url_for(self, path: str) -> str:
        return f"{self.server_url}{quote('/' + path.lstrip('/'))}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        if not self.server_url:
            raise SyncError("webdav_server_url_missing")
        try:
            res = self.session.request(method, self.url_for(path), timeout=self.timeout, verify=self.verify, **kwargs)
        except requests.Timeout as e:
            raise NetworkError(f"webdav_timeout: {method} {path}") from e
        except requests.ConnectionError as e:
            raise NetworkError(f"webdav_connection_failed: {method} {path}: {e}") from e
        except requests.RequestException as e:
            raise NetworkError(f"webdav_request_failed: {method} {path}: {e}") from e

        logger.debug("webdav_request method=%s path=%s status=%s", method, path, res.status_code)
        if res.status_code in (401, 403):
            raise AuthError(f"webdav_auth_rejected status={res.status_code}")
        if res.status_code >= 500:
            raise NetworkError(f"webdav_server_error status={res.status_code} {method} {path}")
        return res

    def propfind(self, path: str, depth: int = 0) -> list[dict[str, Any]] | None:
        res = self._request(
            "PROPFIND",
            path,
            data=PROPFIND_BODY.encode("utf-8"),
            headers={"Depth": str(depth), "Content-Type": "application/xml; charset=utf-8"},
        )
        if res.status_code == 404:
            return None
        if res.status_code not in (200, 207):
            raise SyncError(f"webdav_propfind_failed status={res.status_code} path={path}")
        return parse_multistatus(res.content)

    def stat(self, path: str) -> dict[str, Any] | None:
        entries = self.propfind(path, depth=0)
        if entries is None:
            return None
        return entries[0] if entries else {"href": path, "last_modified": None, "is_collection": False}

    def exists(self, path: str) -> bool:
        return self.stat(path) is not None

    def get_last_modified(self, path: str) -> int | None:
        info = self.stat(path)
        if info is None:
            return None
        return info.get("last_modified")

    def get(self, path: str) -> bytes:
        res = self._request("GET", path)
        if res.status_code == 404:
            raise FileNotFoundError(path)
        if res.status_code != 200:
            raise SyncError(f"webdav_get_failed status={res.status_code} path={path}")
        return res.content

    def put(self, path: str, data: bytes) -> None:
        res = self._request(
            "PUT",
            path,
            data=data,
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        if res.status_code not in (200, 201, 204):
            raise SyncError(f"webdav_put_failed status={res.status_code} path={path}")

    def mkcol(self, path: str) -> bool:
        """Create one collection. Returns False when it already existed."""
        res = self._request("MKCOL", path)
        if res.status_code in (200, 201):
            return True
        # 405: already exists. 409 is what several servers answer for the same case.
        if res.status_code in (405, 409):
            return False
        raise SyncError(f"webdav_mkcol_failed status={res.status_code} path={path}")

    def ensure_directory(self, path: str) -> None:
        current = ""
        for part in [p for p in path.split("/") if p]:
            current = f"{current}/{part}"
            if self.mkcol(current):
                logger.info("webdav_directory_created path=%s", current)
