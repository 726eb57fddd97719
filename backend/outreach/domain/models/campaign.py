"""
Campaign Domain Models
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum

from outreach.domain.models.job_spec import JobSpec
from outreach.domain.models.rate_limit_config import RateLimitConfig
from outreach.utils.time_utils import utcnow


class CampaignStatus(str, Enum):
    """Campaign status"""
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class RejectionPolicy(str, Enum):
    """What happens to a candidate when an approval is rejected"""
    RETRY_STAGE = "retry_stage"          # re-open the same stage later
    SKIP_STAGE = "skip_stage"            # advance past the stage without sending
    FAIL_CANDIDATE = "fail_candidate"    # terminate the candidate as failed


class Campaign(BaseModel):
    """Recruiting campaign driving an outreach pipeline"""
    id: str
    title: str
    role_title: str = ""
    role_description: str = ""
    status: CampaignStatus = CampaignStatus.DRAFT

    job_spec: JobSpec = Field(default_factory=JobSpec)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)

    # Approval rejection handling
    rejection_policy: RejectionPolicy = RejectionPolicy.RETRY_STAGE
    rejection_retry_hours: int = Field(default=24, ge=0)

    # Executor failure handling (attempt budget lives on each stage)
    retry_delay_seconds: int = Field(default=3600, ge=0)

    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == CampaignStatus.ACTIVE
