"""
Approval Queue
Human approval gate for outbound stage actions
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from outreach.domain.errors import ApprovalConflictError, InvalidStateError, NotFoundError
from outreach.domain.interfaces.audit_sink import AuditSink
from outreach.domain.interfaces.pipeline_repository import PipelineRepository
from outreach.domain.models.agent_action import AgentAction
from outreach.domain.models.approval import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    StageRef,
)
from outreach.domain.models.pipeline_state import ActionStatus, CandidatePipelineState
from outreach.domain.services.candidate_locks import CandidateLockRegistry
from outreach.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class ApprovalQueue:
    """
    pending -> approved -> sent | failed, pending -> rejected.

    Requests live inside the candidate's pipeline state, so every transition
    is a read-modify-write of that aggregate under its candidate lock. The
    `*_on` variants expect the caller to already hold the lock and pass the
    freshly loaded state. Every transition is persisted, then audited once.
    """

    def __init__(
        self,
        repository: PipelineRepository,
        audit_sink: AuditSink,
        locks: CandidateLockRegistry
    ):
        self._repository = repository
        self._audit = audit_sink
        self._locks = locks

    # ---- lock-held transitions ------------------------------------------

    async def open_on(
        self,
        state: CandidatePipelineState,
        stage: StageRef,
        proposed_text: str,
        context: Optional[str],
        now: datetime
    ) -> ApprovalRequest:
        if state.pending_approval is not None:
            raise ApprovalConflictError(
                f"Candidate {state.candidate_id} already has a pending approval "
                f"in campaign {state.campaign_id}"
            )
        if state.is_terminal:
            raise InvalidStateError(
                f"Cannot open approval: candidate {state.candidate_id} is {state.terminal.value}"
            )

        request = ApprovalRequest(
            candidate_id=state.candidate_id,
            campaign_id=state.campaign_id,
            stage=stage,
            approval_type=stage.action_type,
            proposed_text=proposed_text,
            context=context,
            created_at=now,
        )
        state.approvals.append(request)
        state.action_status = ActionStatus.AWAITING_APPROVAL
        state.updated_at = now
        state.check_invariants()

        await self._repository.save_state(state)
        await self._emit(request, "approval_opened", now, success=True)
        logger.info(
            f"Approval {request.id} opened for candidate {state.candidate_id} "
            f"stage {stage.position} ({stage.action_type.value})"
        )
        return request

    async def decide_on(
        self,
        state: CandidatePipelineState,
        request: ApprovalRequest,
        decision: ApprovalDecision,
        decided_by: str,
        now: datetime,
        approved_text: Optional[str] = None
    ) -> ApprovalRequest:
        if decision == ApprovalDecision.APPROVED:
            request.approve(decided_by, now, approved_text)
        else:
            request.reject(decided_by, now)
            state.pending_rejection_id = request.id

        if state.action_status == ActionStatus.AWAITING_APPROVAL:
            state.action_status = ActionStatus.IDLE
        state.updated_at = now
        state.check_invariants()

        await self._repository.save_state(state)
        await self._emit(
            request,
            f"approval_{decision.value}",
            now,
            success=True,
            decided_by=decided_by,
            edited=request.approved_text is not None,
        )
        logger.info(f"Approval {request.id} {decision.value} by {decided_by}")
        return request

    async def mark_sent_on(
        self,
        state: CandidatePipelineState,
        request: ApprovalRequest,
        now: datetime
    ) -> ApprovalRequest:
        request.mark_sent(now)
        state.updated_at = now
        await self._repository.save_state(state)
        await self._emit(request, "approval_sent", now, success=True)
        return request

    async def mark_failed_on(
        self,
        state: CandidatePipelineState,
        request: ApprovalRequest,
        reason: str,
        now: datetime
    ) -> ApprovalRequest:
        request.mark_failed(reason, now)
        state.updated_at = now
        await self._repository.save_state(state)
        await self._emit(request, "approval_failed", now, success=False, error_message=reason)
        logger.warning(f"Approval {request.id} failed: {reason}")
        return request

    # ---- public operations ----------------------------------------------

    async def open(
        self,
        candidate_id: str,
        campaign_id: str,
        stage: StageRef,
        proposed_text: str,
        context: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ApprovalRequest:
        """
        Open a pending request for a (candidate, campaign) pair.

        Raises:
            NotFoundError: the pair is not enrolled
            ApprovalConflictError: a pending request already exists
        """
        now = ensure_utc(now or utcnow())
        async with self._locks.lock_for(candidate_id, campaign_id):
            state = await self._repository.get_state(candidate_id, campaign_id)
            if state is None:
                raise NotFoundError(f"Candidate {candidate_id} is not enrolled in campaign {campaign_id}")
            return await self.open_on(state, stage, proposed_text, context, now)

    async def decide(
        self,
        request_id: str,
        decision: ApprovalDecision,
        decided_by: str,
        approved_text: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ApprovalRequest:
        """
        Record a human decision. Only the first decision is honored.

        Raises:
            NotFoundError: unknown request
            InvalidStateError: request is no longer pending
        """
        now = ensure_utc(now or utcnow())
        state, request = await self._locate(request_id)
        async with self._locks.lock_for(state.candidate_id, state.campaign_id):
            state, request = await self._reload(state, request_id)
            return await self.decide_on(state, request, decision, decided_by, now, approved_text)

    async def mark_sent(self, request_id: str, now: Optional[datetime] = None) -> ApprovalRequest:
        now = ensure_utc(now or utcnow())
        state, _ = await self._locate(request_id)
        async with self._locks.lock_for(state.candidate_id, state.campaign_id):
            state, request = await self._reload(state, request_id)
            return await self.mark_sent_on(state, request, now)

    async def mark_failed(self, request_id: str, reason: str, now: Optional[datetime] = None) -> ApprovalRequest:
        now = ensure_utc(now or utcnow())
        state, _ = await self._locate(request_id)
        async with self._locks.lock_for(state.candidate_id, state.campaign_id):
            state, request = await self._reload(state, request_id)
            return await self.mark_failed_on(state, request, reason, now)

    async def get(self, request_id: str) -> ApprovalRequest:
        _, request = await self._locate(request_id)
        return request

    async def list_requests(
        self,
        campaign_id: str,
        status: Optional[ApprovalStatus] = None
    ) -> List[ApprovalRequest]:
        """Requests for a campaign, oldest first."""
        states = await self._repository.list_states(campaign_id, include_terminal=True)
        requests = [
            request
            for state in states
            for request in state.approvals
            if status is None or request.status == status
        ]
        return sorted(requests, key=lambda r: r.created_at)

    async def counts(self, campaign_id: str) -> Dict[str, int]:
        """Approval counts per status, derived from the requests themselves."""
        requests = await self.list_requests(campaign_id)
        counter = Counter(request.status.value for request in requests)
        return {status.value: counter.get(status.value, 0) for status in ApprovalStatus}

    # ---- helpers ---------------------------------------------------------

    async def _locate(self, request_id: str) -> Tuple[CandidatePipelineState, ApprovalRequest]:
        state = await self._repository.find_state_by_approval(request_id)
        request = state.find_approval(request_id) if state else None
        if state is None or request is None:
            raise NotFoundError(f"Approval request {request_id} not found")
        return state, request

    async def _reload(
        self,
        state: CandidatePipelineState,
        request_id: str
    ) -> Tuple[CandidatePipelineState, ApprovalRequest]:
        fresh = await self._repository.get_state(state.candidate_id, state.campaign_id)
        request = fresh.find_approval(request_id) if fresh else None
        if fresh is None or request is None:
            raise NotFoundError(f"Approval request {request_id} not found")
        return fresh, request

    async def _emit(
        self,
        request: ApprovalRequest,
        action_type: str,
        now: datetime,
        success: bool,
        error_message: Optional[str] = None,
        **details
    ) -> None:
        await self._audit.emit(AgentAction(
            candidate_id=request.candidate_id,
            campaign_id=request.campaign_id,
            action_type=action_type,
            success=success,
            error_message=error_message,
            details={
                "request_id": request.id,
                "status": request.status.value,
                "approval_type": request.approval_type.value,
                "stage_position": request.stage.position,
                "pipeline_version": request.stage.pipeline_version,
                **details,
            },
            created_at=now,
        ))
