from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from bookmarksync import __version__
from bookmarksync.core.config import load_config
from bookmarksync.runtime import SyncRuntime, build_runtime
from bookmarksync.web.api import router as api_router


def build_app(runtime: SyncRuntime | None = None) -> FastAPI:
    runtime = runtime or build_runtime()

    @asynccontextmanager
    async def lifespan(api: FastAPI):
        runtime.scheduler.start(runtime.cfg.sync.auto_sync_interval_min)
        try:
            yield
        finally:
            await runtime.scheduler.stop()

    api = FastAPI(title="bookmarksync", version=__version__, lifespan=lifespan)
    api.state.runtime = runtime
    api.include_router(api_router)
    return api


def main():
    import uvicorn

    cfg = load_config()

    from bookmarksync.core.logging_setup import setup_logging

    setup_logging(cfg.logging.level, cfg.logging.file)

    uvicorn.run(
        build_app(build_runtime(cfg)),
        host=cfg.web_bind_host,
        port=cfg.web_port,
        log_level=cfg.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
