"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from outreach.api.v1.endpoints import (
    approvals,
    campaigns,
    candidates,
    health,
    pipelines,
    scoring,
)

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(campaigns.router)
api_router.include_router(pipelines.router)
api_router.include_router(candidates.router)
api_router.include_router(approvals.router)
api_router.include_router(scoring.router)
