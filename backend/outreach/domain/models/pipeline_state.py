"""
Candidate Pipeline State Model
Per-(candidate, campaign) progress record; owns the candidate's approval requests
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Tuple
from datetime import datetime, timedelta
from enum import Enum

from outreach.domain.errors import InvalidStateError
from outreach.domain.models.approval import ApprovalRequest, ApprovalStatus
from outreach.domain.models.scoring import ScoreBreakdown
from outreach.utils.time_utils import utcnow


class ActionStatus(str, Enum):
    """Status of the in-flight action for the current stage"""
    IDLE = "idle"
    AWAITING_APPROVAL = "awaiting_approval"
    DISPATCHING = "dispatching"
    DONE = "done"


class TerminalState(str, Enum):
    """Terminal pipeline outcomes"""
    COMPLETED = "completed"
    WITHDRAWN = "withdrawn"
    FAILED = "failed"


class CandidatePipelineState(BaseModel):
    """
    Aggregate for one candidate's progress through one campaign.

    Invariants:
    - action_status == AWAITING_APPROVAL iff exactly one approval is pending
    - current_stage_index never decreases
    - once terminal, the state is never advanced again
    """

    # Identity
    candidate_id: str
    campaign_id: str
    pipeline_version: int = Field(..., ge=1)

    # Progress
    current_stage_index: int = Field(default=0, ge=0)
    terminal: Optional[TerminalState] = None
    action_status: ActionStatus = ActionStatus.IDLE

    # Timing
    enrolled_at: datetime = Field(default_factory=utcnow)
    stage_eligible_at: datetime = Field(default_factory=utcnow)
    last_stage_completed_at: Optional[datetime] = None
    dispatch_started_at: Optional[datetime] = None
    reservation_token: Optional[str] = Field(
        None,
        description="Rate-limit reservation charged by the current dispatch"
    )
    updated_at: datetime = Field(default_factory=utcnow)

    # Failure tracking
    attempt_count: int = Field(default=0, ge=0, description="Consecutive failed attempts on the current stage")
    last_error: Optional[str] = None
    needs_reconciliation: bool = False
    pending_rejection_id: Optional[str] = None
    withdraw_reason: Optional[str] = Field(
        None,
        description="Set while a withdrawal waits for an in-flight dispatch, kept once withdrawn"
    )

    # Scoring snapshot taken at enrollment
    score: Optional[ScoreBreakdown] = None

    # Owned approval requests (history, newest last)
    approvals: List[ApprovalRequest] = Field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.candidate_id, self.campaign_id)

    @property
    def is_terminal(self) -> bool:
        return self.terminal is not None

    @property
    def has_started(self) -> bool:
        """True once any stage completed or any approval was opened."""
        return (
            self.current_stage_index > 0
            or self.last_stage_completed_at is not None
            or bool(self.approvals)
            or self.attempt_count > 0
        )

    @property
    def score_total(self) -> float:
        return self.score.total if self.score else 0.0

    @property
    def pending_approval(self) -> Optional[ApprovalRequest]:
        pending = [a for a in self.approvals if a.status == ApprovalStatus.PENDING]
        return pending[0] if pending else None

    def find_approval(self, request_id: str) -> Optional[ApprovalRequest]:
        for approval in self.approvals:
            if approval.id == request_id:
                return approval
        return None

    def approved_for_current_stage(self) -> Optional[ApprovalRequest]:
        """Approved (not yet sent) request for the stage the candidate is on."""
        for approval in reversed(self.approvals):
            if (
                approval.status == ApprovalStatus.APPROVED
                and approval.stage.position == self.current_stage_index
                and approval.stage.pipeline_version == self.pipeline_version
            ):
                return approval
        return None

    def check_invariants(self) -> None:
        """Raise InvalidStateError when the approval flag and requests disagree."""
        pending_count = sum(1 for a in self.approvals if a.status == ApprovalStatus.PENDING)
        awaiting = self.action_status == ActionStatus.AWAITING_APPROVAL
        if pending_count > 1:
            raise InvalidStateError(
                f"{pending_count} pending approvals for candidate {self.candidate_id} "
                f"in campaign {self.campaign_id}"
            )
        if awaiting != (pending_count == 1):
            raise InvalidStateError(
                f"action_status={self.action_status.value} but {pending_count} pending approvals "
                f"for candidate {self.candidate_id} in campaign {self.campaign_id}"
            )

    def is_due(self, now: datetime) -> bool:
        return not self.is_terminal and now >= self.stage_eligible_at

    # ---- transitions -------------------------------------------------

    def _require_active(self, transition: str) -> None:
        if self.is_terminal:
            raise InvalidStateError(
                f"Cannot {transition}: candidate {self.candidate_id} is {self.terminal.value}"
            )

    def begin_dispatch(self, now: datetime, reservation_token: Optional[str] = None) -> None:
        self._require_active("dispatch")
        if self.action_status != ActionStatus.IDLE:
            raise InvalidStateError(
                f"Cannot dispatch from action_status={self.action_status.value}"
            )
        self.action_status = ActionStatus.DISPATCHING
        self.dispatch_started_at = now
        self.reservation_token = reservation_token
        self.updated_at = now

    def advance(self, next_index: int, next_delay_days: int, now: datetime) -> None:
        """Complete the current stage and move to `next_index`."""
        self._require_active("advance")
        if next_index <= self.current_stage_index:
            raise InvalidStateError(
                f"Stage index must increase (current={self.current_stage_index}, next={next_index})"
            )
        self.current_stage_index = next_index
        self.last_stage_completed_at = now
        self.stage_eligible_at = now + timedelta(days=next_delay_days)
        self.action_status = ActionStatus.IDLE
        self.attempt_count = 0
        self.last_error = None
        self.dispatch_started_at = None
        self.reservation_token = None
        self.needs_reconciliation = False
        self.updated_at = now

    def complete(self, now: datetime) -> None:
        """Final stage finished."""
        self._require_active("complete")
        self.last_stage_completed_at = now
        self._terminate(TerminalState.COMPLETED, now)

    def fail(self, reason: str, now: datetime) -> None:
        self._require_active("fail")
        self.last_error = reason
        self._terminate(TerminalState.FAILED, now)

    def withdraw(self, reason: str, now: datetime) -> None:
        self._require_active("withdraw")
        self.withdraw_reason = reason
        self._terminate(TerminalState.WITHDRAWN, now)

    def _terminate(self, terminal: TerminalState, now: datetime) -> None:
        self.terminal = terminal
        self.action_status = ActionStatus.DONE
        self.needs_reconciliation = False
        self.dispatch_started_at = None
        self.reservation_token = None
        self.updated_at = now

    def defer(self, until: datetime, now: datetime) -> None:
        """Return to idle on the same stage, eligible again at `until`."""
        self._require_active("defer")
        self.action_status = ActionStatus.IDLE
        self.stage_eligible_at = until
        self.dispatch_started_at = None
        self.reservation_token = None
        self.needs_reconciliation = False
        self.updated_at = now

    def record_failure(self, error: str, now: datetime) -> None:
        self.attempt_count += 1
        self.last_error = error
        self.updated_at = now

    def should_retry(self, max_attempts: int) -> Tuple[bool, str]:
        """
        Decide whether the current stage gets another attempt.

        Returns:
            (should_retry, reason)
        """
        if self.is_terminal:
            return False, f"terminal_{self.terminal.value}"
        if self.attempt_count >= max_attempts:
            return False, "max_attempts_reached"
        return True, f"retrying_attempt_{self.attempt_count + 1}_of_{max_attempts}"
