from pathlib import Path

import pytest
from pydantic import ValidationError

from bookmarksync.core import config as config_module


def test_load_config_creates_from_template(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    runtime_dir = tmp_path / "runtime"
    template.write_text(
        "\n".join(
            [
                "webdav:",
                "  server_url: https://dav.example.com/dav",
                "  username: tpl_user",
                "  base_path: /Sync",
                "sync:",
                "  auto_sync_interval_min: 15",
                "  conflict_resolution: merge",
                "logging:",
                f"  file: {runtime_dir / 'service.log'}",
                "database:",
                f"  path: {runtime_dir / 'service.db'}",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.webdav.server_url == "https://dav.example.com/dav"
    assert cfg.webdav.username == "tpl_user"
    assert cfg.webdav.base_path == "/Sync"
    assert cfg.sync.auto_sync_interval_min == 15
    assert cfg.sync.conflict_resolution == "merge"


def test_load_config_creates_defaults_when_template_missing(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", tmp_path / "missing-template.yaml")
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.sync.conflict_resolution == "manual"
    assert cfg.sync.auto_sync_interval_min == 30


def test_load_config_falls_back_when_template_invalid(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    template.write_text("webdav: [invalid\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.sync.conflict_resolution == "manual"


def test_save_then_load_roundtrip(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)
    cfg = config_module.AppConfig()
    cfg.webdav.password = "s3cret"
    cfg.sync.auto_sync_interval_min = 0

    config_module.save_config(cfg, target)
    loaded = config_module.load_config(target)

    assert loaded.webdav.password == "s3cret"
    assert loaded.sync.auto_sync_interval_min == 0


def test_config_rejects_unknown_strategy():
    with pytest.raises(ValidationError):
        config_module.SyncConfig(conflict_resolution="coin_flip")


def test_paths_expand_home():
    cfg = config_module.AppConfig.model_validate({"database": {"path": "~/x/service.db"}})
    assert cfg.database.path == str(Path("~/x/service.db").expanduser())


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(0, 0), (-5, 0), (None, 0), ("abc", 0), (1, 1), (90, 90), (99999, 24 * 60)],
)
def test_sanitize_interval_minutes(raw, expected):
    assert config_module.sanitize_interval_minutes(raw) == expected
