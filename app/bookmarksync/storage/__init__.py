from .local_store import SqliteLocalStore

__all__ = ["SqliteLocalStore"]
