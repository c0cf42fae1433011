"""
Health check endpoints.
"""

import time

from fastapi import APIRouter, Request

from nudge.config import settings
from nudge.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "nudge"}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness check: store connectivity and engine configuration."""
    checks = {}
    overall_ok = True
    service = request.app.state.reminder_service

    # 1) Store health check
    t0 = time.time()
    try:
        store_ok = await service.ctx.store.ping()
        latency_ms = round((time.time() - t0) * 1000, 1)
        checks["store"] = {
            "ok": bool(store_ok),
            "latency_ms": latency_ms,
            "backend": settings.store_backend,
        }
        log_health_check("store", bool(store_ok), latency_ms)
        overall_ok = overall_ok and bool(store_ok)
    except Exception as e:
        checks["store"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Configuration
    checks["configuration"] = {
        "ok": True,
        "profile": service.config.profile,
        "environment": settings.environment,
    }

    # 3) Work queue depth
    try:
        pending = await service.repository.pending_work()
        checks["work_queue"] = {"ok": True, "pending": len(pending)}
    except Exception as e:
        checks["work_queue"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
