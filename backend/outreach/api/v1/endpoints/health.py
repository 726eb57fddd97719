"""
Health Check Endpoint
"""
from fastapi import APIRouter, Request, status
from typing import Dict, Any

from outreach.utils.time_utils import utcnow

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request) -> Dict[str, Any]:
    """
    Health check for Docker and monitoring systems.

    Reports whether the engine is wired and how many dispatches are in flight.
    """
    engine = getattr(request.app.state, "engine", None)
    health: Dict[str, Any] = {
        "status": "healthy" if engine else "starting",
        "timestamp": utcnow().isoformat(),
        "service": "outreach-engine",
    }
    if engine:
        health["storage_backend"] = engine.settings.storage_backend
        health["executor"] = engine.executor.name
        health["inflight_dispatches"] = engine.orchestrator.inflight_count
    return health
