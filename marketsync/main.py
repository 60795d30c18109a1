"""
Diagnostics app for a reconciliation session: store lifecycle, periodic jobs,
health and debug endpoints.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from marketsync.config import settings
from marketsync.infrastructure.observability.logging import get_logger, setup_logging
from marketsync.routes import debug, health
from marketsync.services.infrastructure.kv_store import build_store
from marketsync.session import ReconciliationSession

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the session on startup, flush and stop it on shutdown."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    store = build_store(settings)
    session = ReconciliationSession(store=store, config=settings)

    try:
        await session.start()
    except Exception as e:
        logger.error("Failed to start reconciliation session", error=str(e))
        try:
            await store.close()
        except Exception as cleanup_error:
            logger.error("Error closing store", error=str(cleanup_error))
        raise

    app.state.session = session

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        await session.close()
    except Exception as e:
        logger.error("Error closing session", error=str(e))
        shutdown_errors.append(f"Session: {e}")

    try:
        await store.close()
    except Exception as e:
        logger.error("Error closing store", error=str(e))
        shutdown_errors.append(f"Store: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="MarketSync",
    description="Order status and chat reconciliation diagnostics",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
if settings.debug or settings.environment == "development":
    app.include_router(debug.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
