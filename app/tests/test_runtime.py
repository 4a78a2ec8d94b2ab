import asyncio
from pathlib import Path

from bookmarksync.core.config import AppConfig
from bookmarksync.runtime import append_run_history, build_runtime, read_run_history, summarize_result

from fakes import FakeLocalStore, FakeRemoteStore, bookmark


def test_build_runtime_wires_injected_stores():
    cfg = AppConfig()
    cfg.webdav.base_path = "/Custom"
    remote = FakeRemoteStore()
    runtime = build_runtime(cfg, remote=remote, local=FakeLocalStore(), record_history=False)

    assert runtime.orchestrator.base_path == "/Custom"
    assert runtime.scheduler.orchestrator is runtime.orchestrator
    assert runtime.scheduler.on_result is None

    asyncio.run(runtime.orchestrator.run_cycle())
    assert remote.directories == ["/Custom"]


def test_run_history_is_newest_first(tmp_path: Path):
    cfg = AppConfig()
    runtime = build_runtime(
        cfg,
        remote=FakeRemoteStore(),
        local=FakeLocalStore({"bookmarks": [bookmark("https://a.example", "A")]}),
        record_history=False,
    )
    result = asyncio.run(runtime.orchestrator.run_cycle())
    path = tmp_path / "run_history.jsonl"

    append_run_history(summarize_result("scheduled", result), path)
    append_run_history(summarize_result("manual_cli", result), path)
    with path.open("a", encoding="utf-8") as f:
        f.write("not json\n")

    entries = read_run_history(10, path)
    assert [e["trigger"] for e in entries] == ["manual_cli", "scheduled"]
    assert entries[0]["uploaded"] == 3
    assert read_run_history(1, path)[0]["trigger"] == "manual_cli"
    assert read_run_history(5, tmp_path / "missing.jsonl") == []
