from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from bookmarksync.core.config import (
    DEFAULT_CONFIG_PATH,
    RUN_HISTORY_PATH,
    load_config,
    sanitize_interval_minutes,
    save_config,
)
from bookmarksync.providers.webdav import WebDAVRemoteStore
from bookmarksync.runtime import build_runtime, read_run_history, record_run
from bookmarksync.sync.orchestrator import FORCED_DIRECTIONS

app = typer.Typer(add_completion=False)
console = Console()

STRATEGY_CHOICES = ("manual", "use_local", "use_remote", "merge", "auto")


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config.yaml (password masked)."""
    cfg = load_config(path)
    data = cfg.model_dump()
    if data["webdav"]["password"]:
        data["webdav"]["password"] = "********"
    print(json.dumps(data, ensure_ascii=False, indent=2))


@app.command("config-set-webdav")
def config_set_webdav(
    server_url: str = typer.Option(..., "--server-url", help="WebDAV root, e.g. https://dav.example.com/remote.php/webdav"),
    username: str = typer.Option("", "--username"),
    password: str = typer.Option("", "--password"),
    base_path: str = typer.Option("/BookmarkSync", "--base-path", help="Remote directory holding the sync files."),
):
    """Set WebDAV connection settings."""
    cfg = load_config()
    cfg.webdav.server_url = server_url
    cfg.webdav.username = username
    cfg.webdav.password = password
    cfg.webdav.base_path = base_path
    save_config(cfg)
    print(
        json.dumps(
            {
                "ok": True,
                "server_url": cfg.webdav.server_url,
                "username_set": bool(cfg.webdav.username),
                "password_set": bool(cfg.webdav.password),
                "base_path": cfg.webdav.base_path,
            },
            ensure_ascii=False,
            indent=2,
        )
    )


@app.command("config-set-sync")
def config_set_sync(
    interval: int | None = typer.Option(None, "--interval", help="Minutes between scheduled syncs, 0 disables."),
    strategy: str | None = typer.Option(None, "--strategy", help="manual|use_local|use_remote|merge|auto"),
    device_name: str | None = typer.Option(None, "--device-name"),
):
    """Set sync behaviour."""
    cfg = load_config()
    if interval is not None:
        cfg.sync.auto_sync_interval_min = max(int(interval), 0)
    if strategy is not None:
        if strategy not in STRATEGY_CHOICES:
            console.print(f"[red]invalid strategy[/red]: {strategy}")
            raise typer.Exit(2)
        cfg.sync.conflict_resolution = strategy
    if device_name is not None:
        cfg.sync.device_name = device_name
    save_config(cfg)
    print(
        f"OK: auto_sync_interval_min={cfg.sync.auto_sync_interval_min} "
        f"conflict_resolution={cfg.sync.conflict_resolution}"
    )


@app.command()
def status():
    """Show configuration and last-sync summary."""
    cfg = load_config()
    runtime = build_runtime(cfg, record_history=False)
    orchestrator = runtime.orchestrator
    interval = sanitize_interval_minutes(cfg.sync.auto_sync_interval_min)

    table = Table(title="bookmarksync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("webdav", cfg.webdav.server_url or "(unset)")
    table.add_row("base_path", cfg.webdav.base_path)
    table.add_row("auto_sync", "on" if interval > 0 else "off")
    table.add_row("interval_min", str(interval))
    table.add_row("conflict_resolution", cfg.sync.conflict_resolution)
    table.add_row("first_time_sync", "yes" if orchestrator.is_first_time_sync() else "no")
    for kind, info in orchestrator.metadata_summary().items():
        table.add_row(f"last_sync:{kind}", str(info.get("last_sync_at") or "-"))
    last = read_run_history(1)
    table.add_row("last_run", f"{last[0]['status']} @ {last[0]['finished_at']}" if last else "-")
    table.add_row("db", cfg.database.path)
    table.add_row("log", cfg.logging.file)
    table.add_row("web", f"http://{cfg.web_bind_host}:{cfg.web_port}")
    console.print(table)


@app.command("run-once")
def run_once(
    strategy: str | None = typer.Option(None, "--strategy", help="Override conflict_resolution for this run."),
    direction: str | None = typer.Option(None, "--direction", help="upload|download: force every collection one way."),
):
    """Run one sync cycle and print summary JSON."""
    if direction not in FORCED_DIRECTIONS:
        console.print(f"[red]invalid direction[/red]: {direction}")
        raise typer.Exit(2)
    cfg = load_config()
    if strategy is not None:
        if strategy not in STRATEGY_CHOICES:
            console.print(f"[red]invalid strategy[/red]: {strategy}")
            raise typer.Exit(2)
        cfg.sync.conflict_resolution = strategy

    from bookmarksync.core.logging_setup import setup_logging

    setup_logging(cfg.logging.level, cfg.logging.file)
    runtime = build_runtime(cfg, record_history=False)
    result = asyncio.run(runtime.orchestrator.run_cycle(direction))
    summary = record_run(f"manual_cli_{direction}" if direction else "manual_cli", result)
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    if result.status == "error":
        raise typer.Exit(2)


@app.command("test-connection")
def check_connection():
    """Check the WebDAV server and credentials with one PROPFIND of base_path."""
    cfg = load_config()
    remote = WebDAVRemoteStore.from_config(cfg.webdav)
    report = asyncio.run(remote.check_connection(cfg.webdav.base_path))
    print(json.dumps({**report, "server_url": cfg.webdav.server_url}, ensure_ascii=False, indent=2))
    if not report["ok"]:
        raise typer.Exit(1)


@app.command("clear-sync-data")
def clear_sync_data(yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt.")):
    """Forget stored sync metadata; the next run compares from scratch."""
    if not yes:
        typer.confirm("Clear sync metadata for all collections?", abort=True)
    cfg = load_config()
    runtime = build_runtime(cfg, record_history=False)
    runtime.orchestrator.clear_sync_data()
    print(json.dumps({"ok": True, "first_time_sync": runtime.orchestrator.is_first_time_sync()}, indent=2))


@app.command()
def history(
    n: int = typer.Option(20, "--n", min=1),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """Show recent sync runs, newest first."""
    entries = read_run_history(n)
    if json_output:
        print(json.dumps(entries, ensure_ascii=False, indent=2))
        return
    if not entries:
        console.print(f"no runs recorded in {RUN_HISTORY_PATH}")
        return

    table = Table(title="recent sync runs")
    for column in ("finished_at", "trigger", "status", "up", "down", "conflicts", "message"):
        table.add_column(column)
    for entry in entries:
        table.add_row(
            str(entry.get("finished_at") or ""),
            str(entry.get("trigger") or ""),
            str(entry.get("status") or ""),
            str(entry.get("uploaded", 0)),
            str(entry.get("downloaded", 0)),
            str(entry.get("conflicts", 0)),
            str(entry.get("message") or ""),
        )
    console.print(table)


@app.command()
def serve():
    """Start the HTTP API with the scheduler."""
    from bookmarksync.web.main import main as serve_main

    serve_main()


def main():
    app()


if __name__ == "__main__":
    main()
