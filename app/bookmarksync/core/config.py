from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

PROJECT_ROOT = Path(os.environ.get("BOOKMARKSYNC_HOME") or (Path.home() / ".bookmarksync")).expanduser()
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"
LAST_RUN_ONCE_PATH = RUNTIME_DIR / "last_run_once.json"
RUN_HISTORY_PATH = RUNTIME_DIR / "run_history.jsonl"

MIN_SYNC_INTERVAL_MIN = 1
MAX_SYNC_INTERVAL_MIN = 24 * 60


class WebDAVConfig(BaseModel):
    server_url: str = ""
    username: str = ""
    password: str = ""
    base_path: str = "/BookmarkSync"
    timeout_sec: int = Field(default=30, ge=1, le=300)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay_sec: float = Field(default=1.0, ge=0, le=60)
    verify_tls: bool = True


class SyncConfig(BaseModel):
    # 0 means disabled; positive values are minutes between scheduled runs.
    auto_sync_interval_min: int = Field(default=30, ge=0, le=MAX_SYNC_INTERVAL_MIN)
    # What to do with a conflict found during a cycle:
    # - manual: queue it for resolve_conflict()
    # - use_local / use_remote / merge: resolve right away with that strategy
    # - auto: pick a strategy per conflict from the data on both sides
    conflict_resolution: Literal["manual", "use_local", "use_remote", "merge", "auto"] = "manual"
    # Remote last-modified drift tolerated before an upload is treated as racing another writer.
    race_tolerance_ms: int = Field(default=1000, ge=0, le=60000)
    # Local/remote content timestamps closer than this count as the same instant.
    conflict_window_ms: int = Field(default=1000, ge=0, le=600000)
    history_limit: int = Field(default=50, ge=1, le=1000)
    conflict_queue_limit: int = Field(default=20, ge=1, le=500)
    data_change_delay_sec: float = Field(default=2.0, ge=0, le=300)
    sync_on_data_change: bool = True
    sync_on_app_open: bool = True
    device_name: str = ""
    client_name: str = "bookmarksync"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(RUNTIME_DIR / "service.log")

    @field_validator("file")
    @classmethod
    def _expand_file(cls, value: str) -> str:
        return str(Path(value).expanduser())


class DatabaseConfig(BaseModel):
    path: str = str(RUNTIME_DIR / "service.db")

    @field_validator("path")
    @classmethod
    def _expand_path(cls, value: str) -> str:
        return str(Path(value).expanduser())


class AppConfig(BaseModel):
    webdav: WebDAVConfig = Field(default_factory=WebDAVConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Web UI
    web_bind_host: str = "127.0.0.1"
    web_port: int = 8765


def sanitize_interval_minutes(raw_value: object) -> int:
    try:
        raw = int(raw_value or 0)
    except (TypeError, ValueError):
        return 0
    if raw <= 0:
        return 0
    return min(max(raw, MIN_SYNC_INTERVAL_MIN), MAX_SYNC_INTERVAL_MIN)


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    import yaml

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
