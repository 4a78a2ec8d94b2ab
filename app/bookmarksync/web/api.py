from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from bookmarksync.core.config import load_config, sanitize_interval_minutes, save_config
from bookmarksync.core.errors import LockContentionError
from bookmarksync.core.timeutil import iso_from_ms, now_iso
from bookmarksync.runtime import SyncRuntime, read_run_history, summarize_result
from bookmarksync.sync.conflict_detector import describe_conflict, recommended_strategy
from bookmarksync.sync.models import COLLECTIONS
from bookmarksync.sync.orchestrator import FORCED_DIRECTIONS, RESOLUTIONS

router = APIRouter(prefix="/api")
logger = logging.getLogger("api")

PASSWORD_MASK = "********"


def get_runtime(request: Request) -> SyncRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime_not_ready")
    return runtime


def _masked_config(cfg) -> dict[str, Any]:
    data = cfg.model_dump()
    if data["webdav"].get("password"):
        data["webdav"]["password"] = PASSWORD_MASK
    return data


@router.get("/healthz")
def healthz():
    return {
        "ok": True,
        "status": "alive",
        "checked_at": now_iso(),
    }


@router.get("/status/scheduler")
def scheduler_status(request: Request):
    runtime = get_runtime(request)
    return {
        "ok": True,
        **runtime.scheduler.snapshot(),
        "checked_at": now_iso(),
    }


@router.get("/status/sync")
def sync_status(request: Request):
    runtime = get_runtime(request)
    orchestrator = runtime.orchestrator
    last = orchestrator.last_result
    return {
        "ok": True,
        "syncing": orchestrator.is_running,
        "progress": orchestrator.progress.model_dump(),
        "last_result": last.model_dump() if last else None,
        "first_time_sync": orchestrator.is_first_time_sync(),
        "collections": orchestrator.metadata_summary(),
        "conflicts": orchestrator.conflict_summary(),
        "checked_at": now_iso(),
    }


@router.post("/actions/run-once")
async def run_once(request: Request, direction: str | None = None):
    """Run one sync cycle now and return its summary.

    `direction=upload|download` pushes or pulls every collection regardless of timestamps.
    """
    runtime = get_runtime(request)
    if direction not in FORCED_DIRECTIONS:
        raise HTTPException(status_code=400, detail=f"invalid_direction: {direction}")
    trigger = f"manual_web_{direction}" if direction else "manual_web"
    try:
        result = await runtime.scheduler.trigger_now(trigger, direction=direction)
    except LockContentionError:
        raise HTTPException(status_code=409, detail="sync_busy")
    return summarize_result(trigger, result)


@router.post("/actions/test-connection")
async def check_connection(request: Request):
    runtime = get_runtime(request)
    report = await runtime.remote.check_connection(runtime.cfg.webdav.base_path)
    return {**report, "server_url": runtime.cfg.webdav.server_url, "checked_at": now_iso()}


@router.post("/actions/clear-sync-data")
async def clear_sync_data(request: Request):
    """Drop stored sync metadata and queued conflicts; the next cycle runs as a first sync."""
    runtime = get_runtime(request)
    try:
        runtime.orchestrator.clear_sync_data()
    except LockContentionError:
        raise HTTPException(status_code=409, detail="sync_busy")
    return {"ok": True, "first_time_sync": runtime.orchestrator.is_first_time_sync()}


@router.post("/actions/cancel")
def cancel_sync(request: Request):
    runtime = get_runtime(request)
    return {"ok": True, "cancel_requested": runtime.orchestrator.cancel()}


@router.get("/history")
def get_history(request: Request, limit: int = 50):
    runtime = get_runtime(request)
    limit = min(max(int(limit), 1), 500)
    return {
        "ok": True,
        "items": [entry.model_dump() for entry in runtime.orchestrator.get_history(limit)],
        "persisted": read_run_history(limit),
    }


@router.get("/conflicts")
def list_conflicts(request: Request):
    runtime = get_runtime(request)
    out = []
    for index, record in enumerate(runtime.orchestrator.get_conflicts()):
        out.append(
            {
                "index": index,
                "collection": record.item.kind,
                "kind": record.kind,
                "detected_at": iso_from_ms(record.detected_at),
                "description": describe_conflict(record),
                "recommended": recommended_strategy(record),
                "local_records": record.local_payload.record_count() if record.local_payload else None,
                "remote_records": record.remote_payload.record_count() if record.remote_payload else None,
            }
        )
    return {"ok": True, "items": out, "stats": runtime.orchestrator.conflict_summary()}


@router.post("/conflicts/{index}/resolve")
async def resolve_conflict(index: int, payload: dict, request: Request):
    runtime = get_runtime(request)
    resolution = str(payload.get("resolution") or "").strip()
    if resolution not in RESOLUTIONS:
        raise HTTPException(status_code=400, detail=f"invalid_resolution: {resolution or '(empty)'}")
    try:
        await runtime.orchestrator.resolve_conflict(index, resolution)
    except IndexError:
        raise HTTPException(status_code=404, detail="conflict_not_found")
    except LockContentionError:
        raise HTTPException(status_code=409, detail="sync_busy")
    logger.info("conflict_resolution_applied index=%s resolution=%s", index, resolution)
    return {"ok": True, "resolution": resolution, "remaining": len(runtime.orchestrator.get_conflicts())}


@router.post("/events/data-changed")
async def data_changed(request: Request):
    runtime = get_runtime(request)
    return {"ok": True, "queued": runtime.scheduler.notify_data_changed()}


@router.post("/events/app-opened")
async def app_opened(request: Request):
    runtime = get_runtime(request)
    return {"ok": True, "queued": runtime.scheduler.notify_app_opened()}


@router.get("/collections/{name}")
def get_collection(name: str, request: Request):
    runtime = get_runtime(request)
    if name not in COLLECTIONS:
        raise HTTPException(status_code=404, detail=f"unknown_collection: {name}")
    return {
        "ok": True,
        "collection": name,
        "data": runtime.local.load_dataset().get(name),
        "modified_at": iso_from_ms(runtime.local.get_collection_modified_time(name) or None),
    }


@router.put("/collections/{name}")
async def put_collection(name: str, payload: dict, request: Request):
    """Replace one collection with a local edit and queue a debounced sync."""
    runtime = get_runtime(request)
    if name not in COLLECTIONS:
        raise HTTPException(status_code=404, detail=f"unknown_collection: {name}")
    try:
        modified_at = runtime.orchestrator.record_local_edit(name, payload.get("data"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LockContentionError:
        raise HTTPException(status_code=409, detail="sync_busy")
    return {
        "ok": True,
        "collection": name,
        "modified_at": iso_from_ms(modified_at),
        "sync_queued": runtime.scheduler.notify_data_changed(),
    }


@router.get("/config")
def get_config():
    cfg = load_config()
    return {
        **_masked_config(cfg),
        "_scheduler": {
            "configured_interval_min": int(cfg.sync.auto_sync_interval_min or 0),
            "effective_interval_min": sanitize_interval_minutes(cfg.sync.auto_sync_interval_min),
            "auto_sync_enabled": int(cfg.sync.auto_sync_interval_min or 0) > 0,
        },
    }


@router.post("/config")
def update_config(payload: dict, request: Request):
    cfg = load_config()
    merged = cfg.model_dump()

    for key, value in payload.items():
        if key in ("webdav", "sync", "logging", "database") and isinstance(value, dict):
            section = dict(value)
            if key == "webdav" and section.get("password") == PASSWORD_MASK:
                section.pop("password")
            merged.setdefault(key, {})
            merged[key].update(section)
        else:
            merged[key] = value

    try:
        cfg2 = cfg.model_validate(merged)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"invalid_config: {e}")
    save_config(cfg2)

    warnings: list[dict[str, object]] = []
    configured = int(cfg2.sync.auto_sync_interval_min or 0)
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is not None:
        effective = runtime.scheduler.set_interval(configured)
        runtime.cfg = cfg2
    else:
        effective = sanitize_interval_minutes(configured)
    if configured > 0 and configured != effective:
        warnings.append(
            {
                "code": "interval_clamped",
                "configured_interval_min": configured,
                "effective_interval_min": effective,
            }
        )
    return {"ok": True, "warnings": warnings, "restart_required": ["webdav", "database"]}
