"""
Approval Request Model
Human approval gate for a single outbound stage action
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from enum import Enum
import uuid

from outreach.domain.errors import InvalidStateError
from outreach.domain.models.pipeline import ActionType, PipelineStageTemplate
from outreach.utils.time_utils import utcnow


class ApprovalStatus(str, Enum):
    """Status of an approval request"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"    # terminal
    SENT = "sent"            # terminal
    FAILED = "failed"        # terminal


class ApprovalDecision(str, Enum):
    """Human decision on a pending request"""
    APPROVED = "approved"
    REJECTED = "rejected"


class StageRef(BaseModel):
    """Pointer to the stage (in a specific pipeline version) being approved."""

    model_config = ConfigDict(frozen=True)

    pipeline_version: int
    position: int
    name: str
    action_type: ActionType

    @classmethod
    def for_stage(cls, stage: PipelineStageTemplate, version: int) -> "StageRef":
        return cls(
            pipeline_version=version,
            position=stage.position,
            name=stage.name,
            action_type=stage.action_type,
        )


class ApprovalRequest(BaseModel):
    """
    Proposed outbound action waiting on (or past) a human decision.

    Owned by the candidate's pipeline state; at most one request per
    (candidate, campaign) is pending at a time.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    candidate_id: str
    campaign_id: str
    stage: StageRef
    approval_type: ActionType
    proposed_text: str = ""
    approved_text: Optional[str] = None
    context: Optional[str] = Field(None, description="Reasoning shown to the approver")

    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    sent_at: Optional[datetime] = None
    failed_reason: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    @property
    def final_text(self) -> str:
        """Text to dispatch: the approver's edit if any, else the proposal."""
        return self.approved_text if self.approved_text is not None else self.proposed_text

    def _require(self, expected: ApprovalStatus, transition: str) -> None:
        if self.status != expected:
            raise InvalidStateError(
                f"Cannot {transition} approval {self.id}: status is '{self.status.value}', "
                f"expected '{expected.value}'"
            )

    def approve(self, decided_by: str, at: datetime, approved_text: Optional[str] = None) -> None:
        self._require(ApprovalStatus.PENDING, "approve")
        self.status = ApprovalStatus.APPROVED
        self.decided_by = decided_by
        self.decided_at = at
        if approved_text is not None:
            self.approved_text = approved_text

    def reject(self, decided_by: str, at: datetime) -> None:
        self._require(ApprovalStatus.PENDING, "reject")
        self.status = ApprovalStatus.REJECTED
        self.decided_by = decided_by
        self.decided_at = at

    def mark_sent(self, at: datetime) -> None:
        self._require(ApprovalStatus.APPROVED, "mark sent")
        self.status = ApprovalStatus.SENT
        self.sent_at = at

    def mark_failed(self, reason: str, at: datetime) -> None:
        self._require(ApprovalStatus.APPROVED, "mark failed")
        self.status = ApprovalStatus.FAILED
        self.failed_reason = reason
        self.decided_at = self.decided_at or at
