from .client import WebDAVClient
from .remote_store import WebDAVRemoteStore

__all__ = ["WebDAVClient", "WebDAVRemoteStore"]
