"""
Candidates API
Enrollment, pipeline state, withdrawal and manual reconciliation
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from outreach.api.v1.dependencies import get_engine, to_http_exception
from outreach.core.engine import Engine
from outreach.domain.errors import OutreachError
from outreach.domain.models.candidate import Candidate
from outreach.domain.services.orchestrator import ReconcileOutcome

router = APIRouter(prefix="/campaigns/{campaign_id}/candidates", tags=["candidates"])


class WithdrawRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ReconcileRequest(BaseModel):
    outcome: ReconcileOutcome
    note: Optional[str] = Field(None, max_length=500)


@router.post("/", status_code=status.HTTP_201_CREATED)
async def enroll_candidate(campaign_id: str, candidate: Candidate, engine: Engine = Depends(get_engine)):
    """Score and enroll a candidate on the campaign's latest pipeline"""
    try:
        state = await engine.orchestrator.enroll(candidate, campaign_id)
        return {"state": state.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.get("/")
async def list_candidate_states(
    campaign_id: str,
    include_terminal: bool = Query(True),
    engine: Engine = Depends(get_engine)
):
    try:
        states = await engine.orchestrator.list_states(campaign_id, include_terminal=include_terminal)
        states.sort(key=lambda s: s.score_total, reverse=True)
        return {"states": [s.model_dump(mode="json") for s in states]}
    except OutreachError as e:
        raise to_http_exception(e)


@router.get("/{candidate_id}")
async def get_candidate_state(campaign_id: str, candidate_id: str, engine: Engine = Depends(get_engine)):
    try:
        state = await engine.orchestrator.get_state(candidate_id, campaign_id)
        return {"state": state.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.post("/{candidate_id}/withdraw")
async def withdraw_candidate(
    campaign_id: str,
    candidate_id: str,
    body: WithdrawRequest,
    engine: Engine = Depends(get_engine)
):
    try:
        state = await engine.orchestrator.withdraw(candidate_id, campaign_id, body.reason)
        return {"state": state.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.post("/{candidate_id}/reconcile")
async def reconcile_candidate(
    campaign_id: str,
    candidate_id: str,
    body: ReconcileRequest,
    engine: Engine = Depends(get_engine)
):
    """Resolve a dispatch that timed out with an unknown outcome"""
    try:
        state = await engine.orchestrator.reconcile(candidate_id, campaign_id, body.outcome, body.note)
        return {"state": state.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)
