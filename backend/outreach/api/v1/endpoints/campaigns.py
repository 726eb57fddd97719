"""
Campaigns API
Campaign setup, lifecycle (activate / pause / resume / complete) and rate-limit usage
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, ValidationError

from outreach.api.v1.dependencies import get_engine, to_http_exception
from outreach.core.engine import Engine
from outreach.domain.errors import OutreachError
from outreach.domain.models.campaign import Campaign, RejectionPolicy
from outreach.domain.models.job_spec import JobSpec
from outreach.domain.models.rate_limit_config import RateLimitConfig

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


class CampaignCreate(BaseModel):
    """Request body for creating a campaign. Unset policy fields use config defaults."""
    id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200)
    role_title: str = ""
    role_description: str = ""
    job_spec: JobSpec = Field(default_factory=JobSpec)
    rate_limits: Optional[RateLimitConfig] = None
    rejection_policy: Optional[RejectionPolicy] = None
    rejection_retry_hours: Optional[int] = Field(None, ge=0)
    retry_delay_seconds: Optional[int] = Field(None, ge=0)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_campaign(body: CampaignCreate, engine: Engine = Depends(get_engine)):
    """Create a draft campaign"""
    try:
        fields = engine.campaign_defaults()
        fields.update(body.model_dump(exclude_none=True, exclude={"id"}))
        campaign = Campaign(id=body.id or str(uuid.uuid4()), **fields)
        campaign = await engine.orchestrator.create_campaign(campaign)
        return {"campaign": campaign.model_dump(mode="json")}
    except (OutreachError, ValidationError) as e:
        raise to_http_exception(e)


@router.get("/")
async def list_campaigns(
    status_filter: Optional[str] = Query(None, alias="status"),
    engine: Engine = Depends(get_engine)
):
    """List campaigns, optionally filtered by status"""
    campaigns = await engine.repository.list_campaigns(status=status_filter)
    return {"campaigns": [c.model_dump(mode="json") for c in campaigns]}


@router.get("/{campaign_id}")
async def get_campaign(campaign_id: str, engine: Engine = Depends(get_engine)):
    try:
        campaign = await engine.orchestrator.require_campaign(campaign_id)
        return {"campaign": campaign.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.post("/{campaign_id}/activate")
async def activate_campaign(campaign_id: str, engine: Engine = Depends(get_engine)):
    """Start a draft campaign. Requires a published pipeline."""
    try:
        campaign = await engine.orchestrator.activate_campaign(campaign_id)
        return {"campaign": campaign.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.post("/{campaign_id}/pause")
async def pause_campaign(campaign_id: str, engine: Engine = Depends(get_engine)):
    """
    Pause a campaign.

    New stage evaluation stops immediately; actions already dispatching
    still complete and are applied.
    """
    try:
        campaign = await engine.orchestrator.pause_campaign(campaign_id)
        return {"campaign": campaign.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.post("/{campaign_id}/resume")
async def resume_campaign(campaign_id: str, engine: Engine = Depends(get_engine)):
    try:
        campaign = await engine.orchestrator.resume_campaign(campaign_id)
        return {"campaign": campaign.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.post("/{campaign_id}/complete")
async def complete_campaign(campaign_id: str, engine: Engine = Depends(get_engine)):
    try:
        campaign = await engine.orchestrator.complete_campaign(campaign_id)
        return {"campaign": campaign.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.get("/{campaign_id}/rate-limits")
async def get_rate_limit_usage(campaign_id: str, engine: Engine = Depends(get_engine)):
    """Today's usage against the campaign's caps"""
    try:
        return {"usage": await engine.orchestrator.usage(campaign_id)}
    except OutreachError as e:
        raise to_http_exception(e)
