from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from bookmarksync.core.config import LAST_RUN_ONCE_PATH, RUN_HISTORY_PATH, AppConfig, load_config
from bookmarksync.core.timeutil import iso_from_ms, now_iso
from bookmarksync.providers.webdav import WebDAVRemoteStore
from bookmarksync.storage import SqliteLocalStore
from bookmarksync.sync.models import SyncResult
from bookmarksync.sync.orchestrator import SyncOrchestrator
from bookmarksync.sync.scheduler import SyncScheduler
from bookmarksync.sync.stores import LocalStore, RemoteStore

logger = logging.getLogger("runtime")


@dataclass
class SyncRuntime:
    cfg: AppConfig
    local: LocalStore
    remote: RemoteStore
    orchestrator: SyncOrchestrator
    scheduler: SyncScheduler


def summarize_result(trigger: str, result: SyncResult) -> dict[str, Any]:
    counts: dict[str, int] = {}
    for item in result.items:
        counts[item.status] = counts.get(item.status, 0) + 1
    return {
        "trigger": trigger,
        "status": result.status,
        "message": result.message,
        "error": result.error,
        "finished_at": iso_from_ms(result.timestamp),
        "duration_ms": result.duration_ms,
        "conflicts": result.conflict_count,
        "items": {item.kind: item.status for item in result.items},
        "uploaded": counts.get("uploaded", 0),
        "downloaded": counts.get("downloaded", 0),
        "noop": counts.get("noop", 0),
        "recorded_at": now_iso(),
    }


def append_run_history(summary: dict[str, Any], path: Path = RUN_HISTORY_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(summary, ensure_ascii=False))
        f.write("\n")


def read_run_history(limit: int = 50, path: Path = RUN_HISTORY_PATH) -> list[dict[str, Any]]:
    """Most recent entries first; unreadable lines are skipped."""
    if not path.exists():
        return []
    out: list[dict[str, Any]] = []
    for line in reversed(path.read_text(encoding="utf-8").splitlines()):
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            out.append(entry)
        if len(out) >= limit:
            break
    return out


def record_run(trigger: str, result: SyncResult) -> dict[str, Any]:
    summary = summarize_result(trigger, result)
    LAST_RUN_ONCE_PATH.parent.mkdir(parents=True, exist_ok=True)
    LAST_RUN_ONCE_PATH.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
    append_run_history(summary)
    return summary


def build_runtime(
    cfg: AppConfig | None = None,
    *,
    remote: RemoteStore | None = None,
    local: LocalStore | None = None,
    record_history: bool = True,
) -> SyncRuntime:
    """Wire stores, orchestrator and scheduler from config. Stores can be injected."""
    cfg = cfg or load_config()
    local = local if local is not None else SqliteLocalStore(cfg.database.path)
    remote = remote if remote is not None else WebDAVRemoteStore.from_config(cfg.webdav)
    orchestrator = SyncOrchestrator.from_config(cfg, remote, local)
    scheduler = SyncScheduler(
        orchestrator,
        data_change_delay_sec=cfg.sync.data_change_delay_sec,
        sync_on_data_change=cfg.sync.sync_on_data_change,
        sync_on_app_open=cfg.sync.sync_on_app_open,
        on_result=record_run if record_history else None,
    )
    logger.debug("runtime_built base_path=%s server=%s", cfg.webdav.base_path, cfg.webdav.server_url or "-")
    return SyncRuntime(cfg=cfg, local=local, remote=remote, orchestrator=orchestrator, scheduler=scheduler)
