"""Health check and metrics endpoints."""

import logging
from datetime import datetime, timezone
from typing import Annotated, Literal

from fastapi import APIRouter, Query, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from marketplace_ledger.api.dependencies import DbSession
from marketplace_ledger.metrics import MetricsCollector

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession) -> HealthResponse:
    """Check API and database health."""
    db_status = "unhealthy"
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError:
        logger.exception("Database health check failed")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        database=db_status,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check() -> dict[str, str]:
    """Readiness check for container orchestration."""
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}


@router.get("/metrics")
async def metrics(
    db: DbSession,
    output: Annotated[Literal["prometheus", "json"], Query(alias="format")] = "prometheus",
) -> Response:
    """Ledger metrics in Prometheus text format (or JSON)."""
    collected = await MetricsCollector(db).collect_all()
    if output == "json":
        return Response(content=collected.to_json(), media_type="application/json")
    return Response(
        content=collected.to_prometheus(),
        media_type="text/plain; version=0.0.4",
    )
