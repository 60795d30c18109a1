# marketsync/routes/health.py
"""
Health check endpoints for the reconciliation session.
"""

import time

from fastapi import APIRouter, Request

from marketsync.config import settings

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "marketsync"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: persistent store reachability and periodic job state.
    The store is optional for correctness, so only the scheduler gates readiness.
    """
    session = request.app.state.session
    checks = {}
    overall_ok = True

    # 1) Persistent store
    t0 = time.time()
    try:
        store_ok = await session.store.ping() if session.store is not None else False
        checks["store"] = {
            "ok": bool(store_ok),
            "backend": settings.STORE_BACKEND,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
    except Exception as e:
        checks["store"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}

    # 2) Periodic jobs
    scheduler_ok = session.scheduler.is_running
    checks["jobs"] = {"ok": scheduler_ok}
    overall_ok = overall_ok and scheduler_ok

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
