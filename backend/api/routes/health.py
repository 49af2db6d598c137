"""
Health endpoints.

``/health`` reports the upstream search guard rails shared by every batch in
this process (circuit breaker and token bucket). ``/health/db`` checks the
ranking cache store.
"""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import Engine
from infrastructure.config import get_settings
from infrastructure.database import get_db
from infrastructure.database.models import ComboRankingCache
from services.circuit_breaker import OPEN

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()

DB_CHECK_TIMEOUT_SECONDS = 5.0


@router.get("/health")
async def health_check(engine: Engine):
    """
    Service health with the state of the shared search guard rails.

    An open breaker means ranking batches are failing fast with
    ``circuit_open``; the service is up but degraded.
    """
    fetcher = engine.fetcher
    circuit = fetcher.breaker.state
    return {
        "status": "degraded" if circuit == OPEN else "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "search": {
            "circuit": circuit,
            "failure_rate": round(fetcher.breaker.failure_rate, 3),
            "tokens_available": round(fetcher.limiter.available, 2),
            "token_capacity": fetcher.limiter.capacity,
            "max_concurrency": fetcher.max_concurrency,
        },
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/db")
async def health_check_db(engine: Engine, db: AsyncSession = Depends(get_db)):
    """Ranking cache connectivity and today's cached combo count."""
    today = engine.fetcher.clock.today()
    cached_today = None
    try:
        result = await asyncio.wait_for(
            db.execute(
                select(func.count())
                .select_from(ComboRankingCache)
                .where(ComboRankingCache.snapshot_date == today)
            ),
            timeout=DB_CHECK_TIMEOUT_SECONDS,
        )
        cached_today = result.scalar_one()
        db_status = "connected"
    except TimeoutError:
        logger.error("Health check DB timeout")
        db_status = "error: database timeout"
    except Exception as e:
        logger.error("Health check DB error: %s", str(e))
        db_status = "error: database check failed"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "snapshot_date": today.isoformat(),
        "cached_today": cached_today,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/live")
async def liveness_check():
    """Liveness check; does not touch the database or the upstream."""
    return {"alive": True}
