"""Imagery Cache — FastAPI application entry point.

Owns the process lifecycle: creates the database engine, builds the
CacheStore handle, and tears both down on shutdown. Exposes a small
operator surface for health, statistics and maintenance.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from imagery_cache.config import Settings, settings
from imagery_cache.errors import StorageUnavailableError

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger("imagery_cache")


# ═══════════════ LIFESPAN ═══════════════

@asynccontextmanager
async def lifespan(app: FastAPI):
    config: Settings = app.state.config
    logger.info("Imagery cache starting | sweep_interval=%ds", config.cache_sweep_interval_seconds)

    from imagery_cache.database import close_db, create_engine, create_session_factory, init_db
    from imagery_cache.services.store import CacheStore

    engine = create_engine(config)
    db_ok = await init_db(engine)
    logger.info("Database: %s", "connected" if db_ok else "unavailable (caches will miss)")

    store = CacheStore(create_session_factory(engine), config)
    await store.start(config.cache_sweep_interval_seconds if config.sweep_enabled else None)

    app.state.engine = engine
    app.state.store = store

    yield

    await store.close()
    await close_db(engine)
    logger.info("Imagery cache shutting down")


# ═══════════════ APP ═══════════════

def get_store(request: Request):
    return request.app.state.store


def require_admin(request: Request):
    """Bearer-token guard for destructive endpoints (open when no token is configured)."""
    config: Settings = request.app.state.config
    if not config.has_admin_token:
        return
    if request.headers.get("authorization", "") != f"Bearer {config.admin_token}":
        raise HTTPException(status_code=401, detail="Admin token required")


def create_app(config: Settings | None = None) -> FastAPI:
    app = FastAPI(
        title="Imagery Cache",
        description="Persistent cache for imagery archive searches, feasibility checks and orders",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config or settings

    @app.exception_handler(StorageUnavailableError)
    async def storage_unavailable(request: Request, exc: StorageUnavailableError):
        logger.error("Request failed | %s", exc)
        return JSONResponse(status_code=503, content={"error": str(exc)})

    # ═══════════════ ENDPOINTS ═══════════════

    @app.get("/health")
    async def health(request: Request):
        from imagery_cache.database import check_database, pool_status

        engine = request.app.state.engine
        db_ok = await check_database(engine)
        return {
            "status": "ok" if db_ok else "degraded",
            "database": db_ok,
            "pool": pool_status(engine),
            "accounting_pending": request.app.state.store.accounting.pending,
        }

    @app.get("/cache/stats")
    async def cache_stats(store=Depends(get_store)):
        stats = await store.stats()
        return {name: value.model_dump(mode="json") for name, value in stats.items()}

    @app.post("/cache/sweep", dependencies=[Depends(require_admin)])
    async def sweep(store=Depends(get_store)):
        removed = await store.sweep_expired()
        return {"removed": removed}

    @app.delete("/cache/{kind}", dependencies=[Depends(require_admin)])
    async def clear_cache(kind: str, store=Depends(get_store)):
        try:
            removed = await store.clear_kind(kind)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown cache '{kind}'") from None
        return {"kind": kind, "removed": removed}

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("imagery_cache.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
