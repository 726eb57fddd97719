"""
Pipelines API
Publish and read versioned stage lists
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, ValidationError

from outreach.api.v1.dependencies import get_engine, to_http_exception
from outreach.core.engine import Engine
from outreach.domain.errors import OutreachError
from outreach.domain.models.pipeline import ActionType, PipelineStageTemplate

router = APIRouter(prefix="/campaigns/{campaign_id}/pipeline", tags=["pipelines"])


class StageInput(BaseModel):
    position: int = Field(..., ge=0)
    name: str = Field(..., min_length=1, max_length=200)
    action_type: ActionType
    delay_days: int = Field(default=0, ge=0)
    requires_approval: bool = True
    template_id: Optional[str] = None
    max_attempts: Optional[int] = Field(None, ge=1, le=10)


class PipelinePublish(BaseModel):
    stages: List[StageInput]


@router.put("/", status_code=status.HTTP_201_CREATED)
async def publish_pipeline(
    campaign_id: str,
    body: PipelinePublish,
    engine: Engine = Depends(get_engine)
):
    """
    Publish a new pipeline version.

    Candidates already mid-pipeline keep the version they started with.
    """
    try:
        stages = [
            PipelineStageTemplate(
                **stage.model_dump(exclude={"max_attempts"}),
                max_attempts=stage.max_attempts or engine.default_max_attempts,
            )
            for stage in body.stages
        ]
        definition = await engine.orchestrator.publish_pipeline(campaign_id, stages)
        return {"pipeline": definition.model_dump(mode="json")}
    except (OutreachError, ValidationError) as e:
        raise to_http_exception(e)


@router.get("/")
async def get_latest_pipeline(campaign_id: str, engine: Engine = Depends(get_engine)):
    try:
        definition = await engine.catalog.require_latest(campaign_id)
        return {"pipeline": definition.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.get("/versions/{version}")
async def get_pipeline_version(campaign_id: str, version: int, engine: Engine = Depends(get_engine)):
    try:
        definition = await engine.catalog.resolve(campaign_id, version)
        return {"pipeline": definition.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)
