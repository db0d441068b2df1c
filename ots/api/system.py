"""Health probes and Prometheus metrics."""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ots import __version__
from ots.database import ping
from ots.dependencies import get_engine, get_metrics, get_scheduler, get_secret_store
from ots.services.metrics import SecretMetrics
from ots.services.scheduler import SchedulerService
from ots.services.secret_store import SecretStore

logger = logging.getLogger(__name__)
router = APIRouter()

DB_CHECK_TIMEOUT = 5.0


async def check_database(engine: AsyncEngine) -> str:
    """Ping the database with a short deadline. Returns "ok" or "down"."""
    try:
        await asyncio.wait_for(ping(engine), DB_CHECK_TIMEOUT)
    except (SQLAlchemyError, OSError, TimeoutError) as e:
        logger.warning(f"Database health check failed: {type(e).__name__}: {e}")
        return "down"
    return "ok"


def _probe_body(state: str, db_health: str) -> dict:
    return {
        "status": state,
        "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "version": __version__,
        "checks": {"database": db_health},
    }


@router.get("/health")
async def health_check(
    engine: AsyncEngine = Depends(get_engine),
    scheduler: SchedulerService = Depends(get_scheduler),
) -> JSONResponse:
    """Full health status; 503 if the database is unreachable."""
    db_health = await check_database(engine)
    healthy = db_health == "ok"
    body = _probe_body("healthy" if healthy else "unhealthy", db_health)
    body["scheduler"] = scheduler.get_status()
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body,
    )


@router.get("/health/ready")
async def readiness_probe(engine: AsyncEngine = Depends(get_engine)) -> JSONResponse:
    """Ready to accept traffic; 503 if the database is unreachable."""
    db_health = await check_database(engine)
    ready = db_health == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_probe_body("ready" if ready else "not_ready", db_health),
    )


@router.get("/health/live")
async def liveness_probe():
    """Process is up."""
    return {"status": "alive"}


@router.get("/metrics")
async def metrics(
    store: SecretStore = Depends(get_secret_store),
    collectors: SecretMetrics = Depends(get_metrics),
) -> Response:
    """Prometheus metrics endpoint."""
    await collectors.collect(store)
    return Response(content=collectors.render(), media_type=collectors.content_type())
