"""
Redis Operator — health and metrics API

Served by uvicorn on a daemon thread of the operator process:
  - Health check (/health)
  - Readiness (/readyz), ready once the operator has started its handlers
  - Prometheus metrics (/metrics)
"""

import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from redis_operator import __version__
from redis_operator.config import settings

logger = logging.getLogger("redis-operator.api")


app = FastAPI(
    title="Redis Operator",
    description="Health and metrics for the Redis operator reconciliation core",
    version=__version__,
    docs_url=None,
    redoc_url=None,
)
app.state.ready = False


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "version": __version__,
    }


@app.get("/readyz")
async def readyz():
    if not app.state.ready:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return {"status": "ready"}


@app.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    """Expose Prometheus metrics."""
    return PlainTextResponse(
        content=generate_latest().decode("utf-8"),
        media_type=CONTENT_TYPE_LATEST,
    )


# --- Global exception handler ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    uvicorn.run(
        "redis_operator.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info",
        reload=False,
    )
