"""
Health Check Routes

Endpoints for service health monitoring.
"""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from config import Settings
from src.api.dependencies import get_app_settings, get_policy_engine
from src.security.policies import PolicyEngine

router = APIRouter()

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    environment: str


@router.get("", response_model=HealthResponse)
@router.get("/", response_model=HealthResponse, include_in_schema=False)
async def health_check(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> HealthResponse:
    """Basic health check."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        environment=settings.environment.value,
    )


@router.get("/live")
async def liveness() -> dict:
    """Kubernetes liveness check."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(
    engine: Annotated[PolicyEngine, Depends(get_policy_engine)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> dict:
    """
    Kubernetes readiness check.

    An unreachable cache degrades performance but not decisions, so the
    service reports ready with a degraded cache.
    """
    cache_ok = await engine.cache.ping()
    return {
        "status": "ready",
        "cache": "connected" if cache_ok else "unavailable",
        "cache_backend": settings.cache_backend.value,
    }
