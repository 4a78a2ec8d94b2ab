from __future__ import annotations

import json
from typing import Any

from .db import get_conn, init_db

_EMPTY = {"categories": [], "bookmarks": [], "settings": {}}


class SqliteLocalStore:
    """LocalStore backed by the service database.

    Each collection is one JSON row; modification times are kept next to it.
    Small metadata values go to the key/value `settings` table.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)

    def load_dataset(self) -> dict[str, Any]:
        out: dict[str, Any] = {k: (list(v) if isinstance(v, list) else dict(v)) for k, v in _EMPTY.items()}
        conn = get_conn(self.db_path)
        try:
            rows = conn.execute("SELECT name, payload_json FROM collections").fetchall()
        finally:
            conn.close()
        for row in rows:
            if row["name"] in out:
                out[row["name"]] = json.loads(row["payload_json"])
        return out

    def save_dataset(self, dataset: dict[str, Any]) -> bool:
        conn = get_conn(self.db_path)
        try:
            for name in _EMPTY:
                if name not in dataset:
                    continue
                conn.execute(
                    """
                    INSERT INTO collections (name, payload_json) VALUES (?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                      payload_json=excluded.payload_json,
                      updated_at=CURRENT_TIMESTAMP
                    """,
                    (name, json.dumps(dataset[name], ensure_ascii=False)),
                )
            conn.commit()
        finally:
            conn.close()
        return True

    def get_collection_modified_time(self, collection: str) -> int:
        conn = get_conn(self.db_path)
        try:
            row = conn.execute("SELECT modified_at FROM collections WHERE name=?", (collection,)).fetchone()
        finally:
            conn.close()
        return int(row["modified_at"] or 0) if row else 0

    def set_collection_modified_time(self, collection: str, timestamp: int) -> bool:
        conn = get_conn(self.db_path)
        try:
            empty = json.dumps(_EMPTY.get(collection, []))
            conn.execute(
                """
                INSERT INTO collections (name, payload_json, modified_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET modified_at=excluded.modified_at
                """,
                (collection, empty, int(timestamp)),
            )
            conn.commit()
        finally:
            conn.close()
        return True

    def get_value(self, key: str) -> str | None:
        conn = get_conn(self.db_path)
        try:
            row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
        finally:
            conn.close()
        return row["value"] if row else None

    def set_value(self, key: str, value: str | None) -> None:
        conn = get_conn(self.db_path)
        try:
            if value is None:
                conn.execute("DELETE FROM settings WHERE key=?", (key,))
            else:
                conn.execute(
                    """
                    INSERT INTO settings (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
            conn.commit()
        finally:
            conn.close()
