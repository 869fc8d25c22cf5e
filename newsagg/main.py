# newsagg/main.py

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request

from newsagg.config import Settings, build_app_config, get_settings
from newsagg.database import SessionLocal, init_db
from newsagg.logging_config import configure_logging
from newsagg.routers import admin_router, feed_router
from newsagg.runtime import NewsRuntime

logger = logging.getLogger(__name__)

RuntimeFactory = Callable[[Settings], NewsRuntime]


def _default_runtime(settings: Settings) -> NewsRuntime:
    init_db()
    return NewsRuntime.build(build_app_config(settings), SessionLocal)


def create_app(runtime_factory: Optional[RuntimeFactory] = None) -> FastAPI:
    """
    Build the FastAPI app.

    The runtime is constructed inside the lifespan so importing this module
    never touches the network, the database or the scheduler.
    """
    factory = runtime_factory or _default_runtime

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)

        runtime = factory(settings)
        await runtime.start()
        app.state.runtime = runtime
        app.state.admin_api_key = settings.ADMIN_API_KEY
        if not settings.ADMIN_API_KEY:
            logger.warning("ADMIN_API_KEY is not set; admin endpoints will refuse every request")

        yield

        logger.info("Shutting down")
        app.state.runtime = None
        await runtime.shutdown()

    app = FastAPI(
        title="News Aggregation Backend",
        description="Multi-provider news aggregation with quota-aware fetching and adaptive caching.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(feed_router)
    app.include_router(admin_router)

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health(request: Request) -> dict:
        runtime: Optional[NewsRuntime] = getattr(request.app.state, "runtime", None)
        if runtime is None:
            return {"status": "starting", "service": "newsagg"}

        loop = asyncio.get_running_loop()
        database_ok = await loop.run_in_executor(None, runtime.article_store.ping)
        cache_ok = await runtime.cache_store.ping()
        return {
            "status": "ok" if database_ok else "degraded",
            "service": "newsagg",
            "database": "ok" if database_ok else "unavailable",
            "cache": "ok" if cache_ok else "degraded",
            "scheduler": runtime.scheduler.get_status() if runtime.scheduler else {"running": False},
        }

    return app


app = create_app()
