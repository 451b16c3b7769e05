"""
Health check endpoints.
"""

import time

from fastapi import APIRouter, Request

from infymailer.features.realtime_metrics.services.metrics_service import APP_STATE_KEY

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "infymailer-metrics"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: the real-time metrics stream must be attached.
    """
    checks = {}
    overall_ok = True

    t0 = time.time()
    service = getattr(request.app.state, APP_STATE_KEY, None)
    if service is None:
        checks["realtime_metrics"] = {"ok": False, "error": "Real-time metrics not initialized"}
        overall_ok = False
    else:
        checks["realtime_metrics"] = {
            "ok": True,
            "latency_ms": round((time.time() - t0) * 1000, 1),
            **service.stats(),
        }

    return {"overall_ok": overall_ok, "checks": checks}
