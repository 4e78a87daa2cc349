"""
Health HTTP surface of the worker.

``/health`` reports overall status from the cache store and collector
health, ``/ready`` only checks the store, ``/live`` always answers.
"""

import logging
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..cache.base import CacheStore
from ..pipeline.scheduler import Scheduler

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Body of ``GET /health``."""

    status: str = Field(..., description="healthy, degraded or unhealthy")
    uptime: int = Field(..., description="Seconds since the app was created")
    cache: str = Field(..., description="connected or disconnected")
    version: str = Field(default=__version__, description="Package version")
    scheduler: Dict[str, Any] = Field(
        default_factory=dict, description="Scheduler job status"
    )
    collectors: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Per-collector meta"
    )


def overall_status(cache_ok: bool, statuses) -> str:
    """
    Combine store reachability and collector statuses.

    More than half the collectors in ``error`` is unhealthy, any error
    or degraded collector is degraded.
    """
    if not cache_ok:
        return "unhealthy"
    statuses = list(statuses)
    errors = sum(1 for s in statuses if s == "error")
    degraded = sum(1 for s in statuses if s == "degraded")
    if errors > len(statuses) / 2:
        return "unhealthy"
    if errors or degraded:
        return "degraded"
    return "healthy"


def _ping(store: CacheStore) -> bool:
    try:
        return store.ping()
    except Exception as e:
        logger.warning(f"Cache ping failed: {e}")
        return False


def create_app(scheduler: Optional[Scheduler], store: CacheStore) -> FastAPI:
    """
    Create the health application.

    Args:
        scheduler: Scheduler whose collectors are reported, may be None
        store: Cache store checked for readiness
    """
    app = FastAPI(
        title="Hazardwatch worker",
        version=__version__,
        docs_url=None,
        redoc_url=None,
    )
    started = time.monotonic()

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    def health():
        cache_ok = _ping(store)
        collectors = {}
        if scheduler is not None:
            collectors = {c.name: c.meta() for c in scheduler.collectors}
        body = HealthResponse(
            status=overall_status(cache_ok, (m["status"] for m in collectors.values())),
            uptime=int(time.monotonic() - started),
            cache="connected" if cache_ok else "disconnected",
            scheduler=scheduler.status() if scheduler is not None else {},
            collectors=collectors,
        )
        code = 503 if body.status == "unhealthy" else 200
        return JSONResponse(status_code=code, content=body.model_dump(mode="json"))

    @app.get("/ready", tags=["health"])
    def ready():
        if _ping(store):
            return PlainTextResponse("OK")
        return PlainTextResponse("NOT READY", status_code=503)

    @app.get("/live", tags=["health"])
    def live():
        return PlainTextResponse("OK")

    return app
