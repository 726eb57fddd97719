"""
Scoring Result Models
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from enum import Enum


class ScoreBucket(str, Enum):
    """Outreach bucket derived from the total score"""
    HOT = "Hot"      # 85-100: immediate outreach
    WARM = "Warm"    # 65-84: standard outreach
    COOL = "Cool"    # 45-64: hold for volume fill
    COLD = "Cold"    # below 45: do not contact

    @classmethod
    def for_total(cls, total: float) -> "ScoreBucket":
        if total >= 85:
            return cls.HOT
        if total >= 65:
            return cls.WARM
        if total >= 45:
            return cls.COOL
        return cls.COLD


class ScoreBreakdown(BaseModel):
    """Per-category sub-scores in [0, 100] plus the weighted total."""
    role_fit: float = Field(0.0, ge=0, le=100)
    company_context: float = Field(0.0, ge=0, le=100)
    trajectory_stability: float = Field(0.0, ge=0, le=100)
    education: float = Field(0.0, ge=0, le=100)
    profile_quality: float = Field(0.0, ge=0, le=100)
    total: float = Field(0.0, ge=0, le=100)

    bucket: ScoreBucket = ScoreBucket.COLD
    hard_filter_passed: bool = True
    disqualify_reason: Optional[str] = None
    flags: List[str] = Field(default_factory=list)

    @property
    def disqualified(self) -> bool:
        return not self.hard_filter_passed
