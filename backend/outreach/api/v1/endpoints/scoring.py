"""
Scoring API
Score a profile against a rubric without enrolling anyone
"""
from fastapi import APIRouter
from pydantic import BaseModel

from outreach.domain.models.candidate import CandidateProfile
from outreach.domain.models.job_spec import JobSpec
from outreach.domain.services.scoring_engine import ScoringEngine

router = APIRouter(prefix="/scoring", tags=["scoring"])

_engine = ScoringEngine()


class ScoreRequest(BaseModel):
    profile: CandidateProfile
    job_spec: JobSpec


@router.post("/score")
async def score_profile(body: ScoreRequest):
    breakdown = _engine.score(body.profile, body.job_spec)
    return {"score": breakdown.model_dump(mode="json")}
