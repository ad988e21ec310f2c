"""
canopy.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn canopy.api.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import Engine

load_dotenv()

from canopy.api.deps import get_config, get_engine, get_service  # noqa: E402
from canopy.api.routes.challenges import router as challenges_router  # noqa: E402
from canopy.database.engine import init_db, run_db  # noqa: E402
from canopy.errors import CanopyError  # noqa: E402
from canopy.services.reconciliation_service import RewardReconciler  # noqa: E402
from canopy.services.retention_service import get_archive_stats  # noqa: E402

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


def _close_ledger(ledger) -> None:
    """Release the ledger's connection pool, if it holds one."""
    close = getattr(ledger, "close", None)
    if close is not None:
        close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: tables, service, reward reconciler, ledger."""
    configure_logging()

    engine = get_engine()
    init_db(engine)
    cfg = get_config()
    service = get_service()

    reconciler = RewardReconciler(
        engine,
        service.store,
        service.dispatcher,
        interval=cfg.reconcile_interval_seconds,
        batch_size=cfg.reconcile_batch_size,
    )
    reconciler.start(asyncio.get_running_loop())
    app.state.reconciler = reconciler

    logger.info(
        "Canopy API started — %s, %d challenge templates",
        cfg.community_name, len(service.catalog),
    )
    yield
    reconciler.stop()
    _close_ledger(service.ledger)
    logger.info("Canopy API shutting down")


app = FastAPI(
    title="Canopy Challenge API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CanopyError)
async def canopy_error_handler(request: Request, exc: CanopyError):
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level, "%s %s → %s: %s",
        request.method, request.url.path, exc.code, exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {"code": exc.code, "message": exc.message},
            "detail": exc.message,
        },
    )


app.include_router(challenges_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/health/archive")
async def archive_health(engine: Engine = Depends(get_engine)):
    """Archive size statistics for operators."""
    return await run_db(get_archive_stats, engine)
