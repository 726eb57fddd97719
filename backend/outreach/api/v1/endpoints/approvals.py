"""
Approvals API
Approval queue listing, counts and human decisions (single and batch)
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from outreach.api.v1.dependencies import get_engine, to_http_exception
from outreach.core.engine import Engine
from outreach.domain.errors import OutreachError
from outreach.domain.models.approval import ApprovalDecision, ApprovalStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/approvals", tags=["approvals"])


class DecisionRequest(BaseModel):
    decision: ApprovalDecision
    decided_by: str = Field(..., min_length=1, max_length=200)
    approved_text: Optional[str] = Field(None, description="Edited text to send instead of the proposal")


class BatchDecisionRequest(BaseModel):
    request_ids: List[str] = Field(..., min_length=1)
    decision: ApprovalDecision
    decided_by: str = Field(..., min_length=1, max_length=200)


@router.get("/")
async def list_approvals(
    campaign_id: str = Query(...),
    status_filter: Optional[ApprovalStatus] = Query(None, alias="status"),
    engine: Engine = Depends(get_engine)
):
    """Approval requests for a campaign, oldest first"""
    requests = await engine.approvals.list_requests(campaign_id, status_filter)
    return {"approvals": [r.model_dump(mode="json") for r in requests]}


@router.get("/counts")
async def approval_counts(campaign_id: str = Query(...), engine: Engine = Depends(get_engine)):
    """Pending / approved / rejected / sent / failed counts for a campaign"""
    return {"campaign_id": campaign_id, "counts": await engine.approvals.counts(campaign_id)}


@router.post("/batch")
async def decide_batch(body: BatchDecisionRequest, engine: Engine = Depends(get_engine)):
    """Apply one decision to several requests; each succeeds or fails on its own"""
    results = await engine.orchestrator.decide_batch(body.request_ids, body.decision, body.decided_by)
    return {
        "results": results,
        "succeeded": sum(1 for r in results if r["success"]),
        "failed": sum(1 for r in results if not r["success"]),
    }


@router.get("/{request_id}")
async def get_approval(request_id: str, engine: Engine = Depends(get_engine)):
    try:
        request = await engine.approvals.get(request_id)
        return {"approval": request.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)


@router.post("/{request_id}/decision")
async def decide(request_id: str, body: DecisionRequest, engine: Engine = Depends(get_engine)):
    """
    Approve or reject a pending request.

    Only the first decision counts; deciding a request that is no longer
    pending returns 409.
    """
    try:
        request = await engine.orchestrator.decide(
            request_id, body.decision, body.decided_by, approved_text=body.approved_text
        )
        return {"approval": request.model_dump(mode="json")}
    except OutreachError as e:
        raise to_http_exception(e)
