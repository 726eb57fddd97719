"""
Pipeline Orchestrator
Drives candidates through campaign stages: scheduling, approval gating,
rate-limited dispatch and outcome handling
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from outreach.domain.errors import (
    ExecutionFailure,
    ExecutionTimeout,
    InvalidStateError,
    NotFoundError,
    OutreachError,
)
from outreach.domain.interfaces.action_executor import ActionExecutor, ExecutionResult
from outreach.domain.interfaces.audit_sink import AuditSink
from outreach.domain.interfaces.message_generator import MessageGenerator
from outreach.domain.interfaces.pipeline_repository import PipelineRepository
from outreach.domain.models.agent_action import AgentAction
from outreach.domain.models.approval import ApprovalDecision, ApprovalRequest, StageRef
from outreach.domain.models.campaign import Campaign, CampaignStatus, RejectionPolicy
from outreach.domain.models.candidate import Candidate
from outreach.domain.models.pipeline import (
    ActionType,
    PipelineDefinition,
    PipelineStageTemplate,
    TEXT_ACTIONS,
)
from outreach.domain.models.pipeline_state import ActionStatus, CandidatePipelineState
from outreach.domain.services.approval_queue import ApprovalQueue
from outreach.domain.services.candidate_locks import CandidateLockRegistry
from outreach.domain.services.pipeline_catalog import PipelineCatalog
from outreach.domain.services.rate_limiter import RateLimiter
from outreach.domain.services.scoring_engine import ScoringEngine
from outreach.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    """Operator verdict for a dispatch whose outcome is unknown"""
    SENT = "sent"        # the action went out: apply success
    FAILED = "failed"    # it did not: count a failed attempt
    RESET = "reset"      # back to idle on the same stage, no attempt counted


@dataclass
class TickReport:
    """Summary of one scheduling tick"""
    started_at: datetime
    campaigns: int = 0
    evaluated: int = 0
    errors: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)

    def count(self, outcome: str) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "campaigns": self.campaigns,
            "evaluated": self.evaluated,
            "errors": self.errors,
            "outcomes": dict(self.outcomes),
        }


@dataclass
class _Dispatch:
    """Everything the background executor call needs once the lock is released"""
    candidate: Candidate
    campaign: Campaign
    stage: PipelineStageTemplate
    content: Optional[str]
    approval_id: Optional[str]
    reservation_token: Optional[str]


class Orchestrator:
    """
    Advances CandidatePipelineStates through their pinned PipelineDefinition.

    All reads and writes of one (candidate, campaign) state happen under that
    pair's lock. Executor calls run as background tasks outside the lock; the
    candidate stays DISPATCHING until the outcome (or a timeout) is applied.
    """

    def __init__(
        self,
        repository: PipelineRepository,
        catalog: PipelineCatalog,
        approvals: ApprovalQueue,
        rate_limiter: RateLimiter,
        scoring: ScoringEngine,
        executor: ActionExecutor,
        generator: MessageGenerator,
        audit_sink: AuditSink,
        locks: CandidateLockRegistry,
        execution_timeout_seconds: float = 300,
        max_parallel_evaluations: int = 16,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._repository = repository
        self._catalog = catalog
        self._approvals = approvals
        self._rate_limiter = rate_limiter
        self._scoring = scoring
        self._executor = executor
        self._generator = generator
        self._audit = audit_sink
        self._locks = locks
        self._timeout = execution_timeout_seconds
        self._max_parallel = max(1, max_parallel_evaluations)
        self._clock = clock or utcnow

        self._inflight: Dict[Tuple[str, str], asyncio.Task] = {}

    def _now(self, now: Optional[datetime] = None) -> datetime:
        return ensure_utc(now or self._clock())

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    # =====================================================================
    # Campaign setup
    # =====================================================================

    async def create_campaign(self, campaign: Campaign) -> Campaign:
        await self._repository.save_campaign(campaign)
        self._rate_limiter.configure(campaign.id, campaign.rate_limits)
        logger.info(f"Campaign {campaign.id} saved ({campaign.status.value})")
        return campaign

    async def require_campaign(self, campaign_id: str) -> Campaign:
        campaign = await self._repository.get_campaign(campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    async def publish_pipeline(
        self,
        campaign_id: str,
        stages: Sequence[PipelineStageTemplate]
    ) -> PipelineDefinition:
        """Publish a new stage list version; candidates mid-pipeline keep theirs."""
        await self.require_campaign(campaign_id)
        return await self._catalog.publish(campaign_id, stages)

    async def activate_campaign(self, campaign_id: str, now: Optional[datetime] = None) -> Campaign:
        """draft -> active. Requires a published pipeline."""
        campaign = await self.require_campaign(campaign_id)
        if campaign.status != CampaignStatus.DRAFT:
            raise InvalidStateError(f"Campaign {campaign_id} is {campaign.status.value}, expected draft")
        await self._catalog.require_latest(campaign_id)
        campaign.status = CampaignStatus.ACTIVE
        campaign.started_at = self._now(now)
        await self._repository.save_campaign(campaign)
        logger.info(f"Campaign {campaign_id} activated")
        return campaign

    async def pause_campaign(self, campaign_id: str) -> Campaign:
        """
        Stop new stage evaluation for the campaign's candidates.

        Dispatches already in flight are not aborted; their outcomes are
        still applied when they arrive.
        """
        campaign = await self.require_campaign(campaign_id)
        if campaign.status != CampaignStatus.ACTIVE:
            raise InvalidStateError(f"Campaign {campaign_id} is {campaign.status.value}, expected active")
        campaign.status = CampaignStatus.PAUSED
        await self._repository.save_campaign(campaign)
        logger.info(f"Campaign {campaign_id} paused")
        return campaign

    async def resume_campaign(self, campaign_id: str) -> Campaign:
        campaign = await self.require_campaign(campaign_id)
        if campaign.status != CampaignStatus.PAUSED:
            raise InvalidStateError(f"Campaign {campaign_id} is {campaign.status.value}, expected paused")
        campaign.status = CampaignStatus.ACTIVE
        await self._repository.save_campaign(campaign)
        logger.info(f"Campaign {campaign_id} resumed")
        return campaign

    async def complete_campaign(self, campaign_id: str, now: Optional[datetime] = None) -> Campaign:
        campaign = await self.require_campaign(campaign_id)
        if campaign.status == CampaignStatus.COMPLETED:
            raise InvalidStateError(f"Campaign {campaign_id} is already completed")
        campaign.status = CampaignStatus.COMPLETED
        campaign.completed_at = self._now(now)
        await self._repository.save_campaign(campaign)
        logger.info(f"Campaign {campaign_id} completed")
        return campaign

    # =====================================================================
    # Enrollment
    # =====================================================================

    async def enroll(
        self,
        candidate: Candidate,
        campaign_id: str,
        now: Optional[datetime] = None
    ) -> CandidatePipelineState:
        """
        Score a candidate and create their pipeline state on the latest version.

        Candidates failing a hard filter are enrolled directly as failed.

        Raises:
            NotFoundError: unknown campaign or campaign without a pipeline
            InvalidStateError: candidate already enrolled in the campaign
        """
        now = self._now(now)
        campaign = await self.require_campaign(campaign_id)
        definition = await self._catalog.require_latest(campaign_id)

        async with self._locks.lock_for(candidate.id, campaign_id):
            if await self._repository.get_state(candidate.id, campaign_id):
                raise InvalidStateError(f"Candidate {candidate.id} is already enrolled in campaign {campaign_id}")

            await self._repository.save_candidate(candidate)
            score = self._scoring.score(candidate.profile, campaign.job_spec)
            first = definition.stage_at(0)

            state = CandidatePipelineState(
                candidate_id=candidate.id,
                campaign_id=campaign_id,
                pipeline_version=definition.version,
                enrolled_at=now,
                stage_eligible_at=now + timedelta(days=first.delay_days),
                updated_at=now,
                score=score,
            )

            if score.disqualified:
                state.fail(score.disqualify_reason, now)
                await self._repository.save_state(state)
                await self._record(
                    state, "candidate_disqualified", False, now,
                    error_message=score.disqualify_reason,
                )
                logger.info(f"Candidate {candidate.id} disqualified: {score.disqualify_reason}")
                return state

            await self._repository.save_state(state)
            await self._record(
                state, "candidate_enrolled", True, now,
                score=score.total, bucket=score.bucket.value,
                pipeline_version=definition.version,
            )
            logger.info(
                f"Enrolled candidate {candidate.id} in campaign {campaign_id} "
                f"(score {score.total}, {score.bucket.value}, pipeline v{definition.version})"
            )
            return state

    # =====================================================================
    # Scheduling
    # =====================================================================

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """
        Evaluate every due, non-terminal candidate of every active campaign.

        Candidates are started in descending score order; independent pairs
        run concurrently up to `max_parallel_evaluations`.
        """
        now = self._now(now)
        report = TickReport(started_at=now)
        semaphore = asyncio.Semaphore(self._max_parallel)

        campaigns = await self._repository.list_campaigns(status=CampaignStatus.ACTIVE.value)
        report.campaigns = len(campaigns)

        pairs: List[Tuple[str, str]] = []
        stalled: List[Tuple[str, str]] = []
        for campaign in campaigns:
            self._rate_limiter.configure(campaign.id, campaign.rate_limits)
            states = await self._repository.list_states(campaign.id)
            states.sort(key=lambda s: s.score_total, reverse=True)
            pairs.extend(
                (s.candidate_id, s.campaign_id)
                for s in states
                if s.is_due(now) and s.action_status == ActionStatus.IDLE
            )
            stalled.extend(s.key for s in states if self._is_stalled(s, now))

        for candidate_id, campaign_id in stalled:
            try:
                if await self._recover_stalled(candidate_id, campaign_id, now):
                    report.count("needs_reconciliation")
            except OutreachError as e:
                report.errors += 1
                logger.error(f"Could not flag stalled dispatch for candidate {candidate_id}: {e}", exc_info=True)

        async def run(candidate_id: str, campaign_id: str) -> None:
            async with semaphore:
                try:
                    outcome = await self.evaluate(candidate_id, campaign_id, now)
                    report.count(outcome)
                except Exception as e:
                    report.errors += 1
                    logger.error(
                        f"Evaluation failed for candidate {candidate_id} in campaign {campaign_id}: {e}",
                        exc_info=True
                    )
                report.evaluated += 1

        await asyncio.gather(*(run(c, k) for c, k in pairs))

        if report.evaluated:
            logger.info(f"Tick evaluated {report.evaluated} candidates: {report.outcomes}")
        return report

    async def evaluate(
        self,
        candidate_id: str,
        campaign_id: str,
        now: Optional[datetime] = None
    ) -> str:
        """
        Take the next due step for one candidate.

        Returns a short outcome label (e.g. "approval_opened", "dispatched",
        "rate_limited", "not_due").
        """
        now = self._now(now)
        async with self._locks.lock_for(candidate_id, campaign_id):
            campaign = await self._repository.get_campaign(campaign_id)
            if campaign is None or not campaign.is_active:
                return "campaign_inactive"
            self._rate_limiter.configure(campaign.id, campaign.rate_limits)

            state = await self._repository.get_state(candidate_id, campaign_id)
            if state is None:
                raise NotFoundError(f"Candidate {candidate_id} is not enrolled in campaign {campaign_id}")
            return await self._evaluate_locked(state, campaign, now)

    async def _evaluate_locked(
        self,
        state: CandidatePipelineState,
        campaign: Campaign,
        now: datetime
    ) -> str:
        # Each pass either returns or advances the stage index, so this terminates
        while True:
            if state.is_terminal:
                return state.terminal.value
            if state.action_status == ActionStatus.AWAITING_APPROVAL:
                return "awaiting_approval"
            if state.action_status == ActionStatus.DISPATCHING:
                return "needs_reconciliation" if state.needs_reconciliation else "dispatching"

            definition = await self._pinned_definition(state)

            if state.pending_rejection_id:
                await self._apply_rejection(state, campaign, definition, now)
                continue

            if not state.is_due(now):
                return "not_due"

            stage = definition.stage_at(state.current_stage_index)

            if stage.action_type == ActionType.WITHDRAW:
                # Never blocked by limits or approvals
                candidate = await self._require_candidate(state.candidate_id)
                await self._start_dispatch(
                    state, _Dispatch(candidate, campaign, stage, None, None, None), now
                )
                return "withdrawing"

            if stage.action_type == ActionType.WAIT:
                await self._complete_stage(state, definition, stage, now, "wait_elapsed")
                continue

            approved = state.approved_for_current_stage()

            if stage.requires_approval and approved is None:
                decision = await self._rate_limiter.can_dispatch(campaign.id, stage.action_type, now)
                if not decision.allowed:
                    logger.debug(f"Candidate {state.candidate_id} deferred: {decision.reason}")
                    return "rate_limited"
                candidate = await self._require_candidate(state.candidate_id)
                content = await self._generator.generate(stage, candidate, campaign)
                await self._approvals.open_on(
                    state,
                    StageRef.for_stage(stage, state.pipeline_version),
                    content.text,
                    content.reasoning,
                    now,
                )
                return "approval_opened"

            decision = await self._rate_limiter.can_dispatch(campaign.id, stage.action_type, now)
            if not decision.allowed:
                logger.debug(f"Candidate {state.candidate_id} deferred: {decision.reason}")
                return "rate_limited"

            candidate = await self._require_candidate(state.candidate_id)
            if approved is not None:
                text = approved.final_text
            elif stage.action_type in TEXT_ACTIONS:
                text = (await self._generator.generate(stage, candidate, campaign)).text
            else:
                text = None

            # Check and count in one step; another candidate may have taken the slot
            decision, reservation = await self._rate_limiter.try_acquire(campaign.id, stage.action_type, now)
            if not decision.allowed:
                logger.debug(f"Candidate {state.candidate_id} deferred: {decision.reason}")
                return "rate_limited"

            await self._start_dispatch(
                state,
                _Dispatch(candidate, campaign, stage, text, approved.id if approved else None, reservation.token),
                now,
            )
            return "dispatched"

    async def _pinned_definition(self, state: CandidatePipelineState) -> PipelineDefinition:
        """Pinned version; candidates that have not started move to the latest."""
        if not state.has_started:
            latest = await self._catalog.latest(state.campaign_id)
            if latest and latest.version != state.pipeline_version:
                logger.info(
                    f"Candidate {state.candidate_id} moved from pipeline v{state.pipeline_version} "
                    f"to v{latest.version}"
                )
                state.pipeline_version = latest.version
                state.stage_eligible_at = state.enrolled_at + timedelta(days=latest.stage_at(0).delay_days)
                await self._repository.save_state(state)
                return latest
        return await self._catalog.resolve(state.campaign_id, state.pipeline_version)

    async def _require_candidate(self, candidate_id: str) -> Candidate:
        candidate = await self._repository.get_candidate(candidate_id)
        if candidate is None:
            raise NotFoundError(f"Candidate {candidate_id} not found")
        return candidate

    async def _complete_stage(
        self,
        state: CandidatePipelineState,
        definition: PipelineDefinition,
        stage: PipelineStageTemplate,
        now: datetime,
        reason: str
    ) -> None:
        """Advance past `stage`, or complete the pipeline after the last one."""
        next_index = definition.next_index(state.current_stage_index)
        if next_index is None:
            state.complete(now)
            await self._repository.save_state(state)
            await self._record(state, "pipeline_completed", True, now, stage_position=stage.position)
            logger.info(f"Candidate {state.candidate_id} completed campaign {state.campaign_id}")
            return

        next_stage = definition.stage_at(next_index)
        state.advance(next_index, next_stage.delay_days, now)
        await self._repository.save_state(state)
        await self._record(
            state, "stage_advanced", True, now,
            from_position=stage.position, to_position=next_index, reason=reason,
            eligible_at=state.stage_eligible_at.isoformat(),
        )
        logger.info(
            f"Candidate {state.candidate_id} advanced to stage {next_index} "
            f"({next_stage.action_type.value}) in campaign {state.campaign_id}"
        )

    async def _apply_rejection(
        self,
        state: CandidatePipelineState,
        campaign: Campaign,
        definition: PipelineDefinition,
        now: datetime
    ) -> None:
        request_id = state.pending_rejection_id
        state.pending_rejection_id = None
        policy = campaign.rejection_policy
        stage = definition.stage_at(state.current_stage_index)

        if policy == RejectionPolicy.RETRY_STAGE:
            state.defer(now + timedelta(hours=campaign.rejection_retry_hours), now)
            await self._repository.save_state(state)
        elif policy == RejectionPolicy.SKIP_STAGE:
            await self._complete_stage(state, definition, stage, now, "approval_rejected")
        else:
            state.fail(f"approval {request_id} rejected", now)
            await self._repository.save_state(state)

        await self._record(
            state, "rejection_applied", True, now,
            request_id=request_id, policy=policy.value, stage_position=stage.position,
        )
        logger.info(f"Rejection of {request_id} applied to candidate {state.candidate_id}: {policy.value}")

    # =====================================================================
    # Dispatch
    # =====================================================================

    async def _start_dispatch(self, state: CandidatePipelineState, dispatch: _Dispatch, now: datetime) -> None:
        state.begin_dispatch(now, dispatch.reservation_token)
        await self._repository.save_state(state)
        logger.info(
            f"Dispatching {dispatch.stage.action_type.value} for candidate {state.candidate_id} "
            f"in campaign {state.campaign_id}"
        )

        key = state.key
        task = asyncio.create_task(self._run_dispatch(key, dispatch))
        self._inflight[key] = task
        task.add_done_callback(lambda _: self._inflight.pop(key, None))

    async def _run_dispatch(self, key: Tuple[str, str], dispatch: _Dispatch) -> None:
        """Call the executor off the scheduling path and apply what comes back."""
        try:
            result = await asyncio.wait_for(
                self._executor.execute(
                    dispatch.stage.action_type,
                    dispatch.candidate,
                    dispatch.campaign,
                    dispatch.content,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            await self._apply_timeout(key, dispatch)
            return
        except ExecutionFailure as e:
            result = ExecutionResult(success=False, error_message=e.message, details=e.details)
        except Exception as e:
            logger.error(f"Executor raised for candidate {key[0]}: {e}", exc_info=True)
            result = ExecutionResult(success=False, error_message=str(e) or type(e).__name__)

        try:
            await self._apply_outcome(key, dispatch, result)
        except OutreachError as e:
            logger.error(f"Could not apply dispatch outcome for candidate {key[0]}: {e}", exc_info=True)

    async def _apply_outcome(self, key: Tuple[str, str], dispatch: _Dispatch, result: ExecutionResult) -> None:
        async with self._locks.lock_for(*key):
            state = await self._repository.get_state(*key)
            if state is None or state.action_status != ActionStatus.DISPATCHING:
                logger.warning(f"Dropping dispatch outcome for candidate {key[0]}: not dispatching")
                return
            await self._apply_result_locked(state, dispatch, result, self._now())

    async def _apply_result_locked(
        self,
        state: CandidatePipelineState,
        dispatch: _Dispatch,
        result: ExecutionResult,
        now: datetime
    ) -> None:
        stage = dispatch.stage
        await self._record(
            state, stage.action_type.value, result.success, now,
            error_message=result.error_message,
            stage_position=stage.position,
            pipeline_version=state.pipeline_version,
            request_id=dispatch.approval_id,
            executor_details=result.details or None,
        )

        if stage.action_type == ActionType.WITHDRAW:
            state.withdraw(state.withdraw_reason or f"withdraw stage '{stage.name}'", now)
            await self._repository.save_state(state)
            await self._record(state, "candidate_withdrawn", True, now, reason=state.withdraw_reason)
            logger.info(f"Candidate {state.candidate_id} withdrawn from campaign {state.campaign_id}")
            return

        approval = state.find_approval(dispatch.approval_id) if dispatch.approval_id else None

        if result.success:
            if approval is not None:
                await self._approvals.mark_sent_on(state, approval, now)
            definition = await self._catalog.resolve(state.campaign_id, state.pipeline_version)
            await self._complete_stage(state, definition, stage, now, "dispatched")
        else:
            if dispatch.reservation_token is not None:
                await self._rate_limiter.release(state.campaign_id, dispatch.reservation_token)
            await self._apply_failure(state, dispatch.campaign, stage, approval, result.error_message or "unknown error", now)

        await self._apply_requested_withdrawal(state, now)

    async def _apply_failure(
        self,
        state: CandidatePipelineState,
        campaign: Campaign,
        stage: PipelineStageTemplate,
        approval: Optional[ApprovalRequest],
        error: str,
        now: datetime
    ) -> None:
        state.record_failure(error, now)
        retry, reason = state.should_retry(stage.max_attempts)

        if retry:
            retry_at = now + timedelta(seconds=campaign.retry_delay_seconds)
            state.defer(retry_at, now)
            await self._repository.save_state(state)
            logger.warning(
                f"{stage.action_type.value} failed for candidate {state.candidate_id} "
                f"({reason}): {error}"
            )
            return

        if approval is not None:
            await self._approvals.mark_failed_on(state, approval, error, now)
        state.fail(f"{reason}: {error}", now)
        await self._repository.save_state(state)
        await self._record(
            state, "candidate_failed", False, now,
            error_message=error, attempts=state.attempt_count, stage_position=stage.position,
        )
        logger.error(
            f"Candidate {state.candidate_id} failed in campaign {state.campaign_id} after "
            f"{state.attempt_count} attempts: {error}"
        )

    async def _apply_timeout(self, key: Tuple[str, str], dispatch: _Dispatch) -> None:
        async with self._locks.lock_for(*key):
            state = await self._repository.get_state(*key)
            if (
                state is None
                or state.action_status != ActionStatus.DISPATCHING
                or state.needs_reconciliation
            ):
                return
            await self._flag_unknown_outcome(state, dispatch, self._now())

    async def _flag_unknown_outcome(
        self,
        state: CandidatePipelineState,
        dispatch: _Dispatch,
        now: datetime
    ) -> None:
        """Hold the candidate in DISPATCHING until an operator reconciles it."""
        timeout = ExecutionTimeout(self._timeout)

        if dispatch.stage.action_type == ActionType.WITHDRAW:
            await self._apply_result_locked(
                state, dispatch, ExecutionResult(success=False, error_message=timeout.message), now
            )
            return

        state.needs_reconciliation = True
        state.last_error = timeout.message
        state.updated_at = now
        await self._repository.save_state(state)

        await self._record(
            state, dispatch.stage.action_type.value, False, now,
            error_message=timeout.message,
            outcome="unknown",
            needs_reconciliation=True,
            stage_position=dispatch.stage.position,
            request_id=dispatch.approval_id,
        )
        logger.error(
            f"{dispatch.stage.action_type.value} for candidate {state.candidate_id} in campaign "
            f"{state.campaign_id} {timeout.message}; manual reconciliation required"
        )

    def _is_stalled(self, state: CandidatePipelineState, now: datetime) -> bool:
        """
        DISPATCHING past the execution timeout with no executor call running
        here, e.g. after the process that started it died.
        """
        return (
            state.action_status == ActionStatus.DISPATCHING
            and not state.needs_reconciliation
            and state.key not in self._inflight
            and state.dispatch_started_at is not None
            and now >= ensure_utc(state.dispatch_started_at) + timedelta(seconds=self._timeout)
        )

    async def _dispatch_from_state(self, state: CandidatePipelineState, campaign: Campaign) -> _Dispatch:
        """Rebuild the dispatch of the current stage from persisted state."""
        definition = await self._catalog.resolve(state.campaign_id, state.pipeline_version)
        stage = definition.stage_at(state.current_stage_index)
        approval = state.approved_for_current_stage()
        return _Dispatch(
            candidate=await self._require_candidate(state.candidate_id),
            campaign=campaign,
            stage=stage,
            content=approval.final_text if approval else None,
            approval_id=approval.id if approval else None,
            reservation_token=state.reservation_token,
        )

    async def _recover_stalled(self, candidate_id: str, campaign_id: str, now: datetime) -> bool:
        async with self._locks.lock_for(candidate_id, campaign_id):
            state = await self._repository.get_state(candidate_id, campaign_id)
            if state is None or not self._is_stalled(state, now):
                return False
            campaign = await self.require_campaign(campaign_id)
            logger.warning(
                f"Dispatch for candidate {candidate_id} in campaign {campaign_id} started at "
                f"{state.dispatch_started_at.isoformat()} has no running executor call"
            )
            await self._flag_unknown_outcome(state, await self._dispatch_from_state(state, campaign), now)
            return True

    async def drain(self) -> None:
        """Wait for every in-flight dispatch to apply its outcome."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()))

    # =====================================================================
    # Decisions, withdrawal and reconciliation
    # =====================================================================

    async def decide(
        self,
        request_id: str,
        decision: ApprovalDecision,
        decided_by: str,
        approved_text: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ApprovalRequest:
        """Record a decision, then evaluate the candidate right away."""
        now = self._now(now)
        request = await self._approvals.decide(request_id, decision, decided_by, approved_text, now)
        await self.evaluate(request.candidate_id, request.campaign_id, now)
        return request

    async def decide_batch(
        self,
        request_ids: Sequence[str],
        decision: ApprovalDecision,
        decided_by: str,
        now: Optional[datetime] = None
    ) -> List[dict]:
        """Apply one decision to many requests independently."""
        results = []
        for request_id in request_ids:
            try:
                request = await self.decide(request_id, decision, decided_by, now=now)
                results.append({"request_id": request_id, "success": True, "status": request.status.value})
            except OutreachError as e:
                results.append({"request_id": request_id, "success": False, "error": e.message})
        return results

    async def withdraw(
        self,
        candidate_id: str,
        campaign_id: str,
        reason: str,
        now: Optional[datetime] = None
    ) -> CandidatePipelineState:
        """
        Withdraw a candidate from a campaign.

        A pending approval is rejected by `system:withdraw`. If an action is
        dispatching, the withdrawal is applied after its outcome arrives.
        """
        now = self._now(now)
        async with self._locks.lock_for(candidate_id, campaign_id):
            state = await self._require_state(candidate_id, campaign_id)
            if state.is_terminal:
                raise InvalidStateError(f"Candidate {candidate_id} is already {state.terminal.value}")

            if state.action_status == ActionStatus.DISPATCHING:
                state.withdraw_reason = reason
                state.updated_at = now
                await self._repository.save_state(state)
                await self._record(state, "withdraw_requested", True, now, reason=reason)
                logger.info(f"Withdrawal of candidate {candidate_id} deferred until dispatch completes")
                return state

            pending = state.pending_approval
            if pending is not None:
                await self._approvals.decide_on(state, pending, ApprovalDecision.REJECTED, "system:withdraw", now)
                state.pending_rejection_id = None

            state.withdraw(reason, now)
            await self._repository.save_state(state)
            await self._record(state, "candidate_withdrawn", True, now, reason=reason)
            logger.info(f"Candidate {candidate_id} withdrawn from campaign {campaign_id}: {reason}")
            return state

    async def _apply_requested_withdrawal(self, state: CandidatePipelineState, now: datetime) -> None:
        if state.withdraw_reason and not state.is_terminal:
            state.withdraw(state.withdraw_reason, now)
            await self._repository.save_state(state)
            await self._record(state, "candidate_withdrawn", True, now, reason=state.withdraw_reason)
            logger.info(f"Deferred withdrawal applied to candidate {state.candidate_id}")

    async def reconcile(
        self,
        candidate_id: str,
        campaign_id: str,
        outcome: ReconcileOutcome,
        note: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CandidatePipelineState:
        """
        Resolve a dispatch whose outcome is unknown: one that timed out, or
        one left DISPATCHING past the timeout with no executor call running.

        Raises:
            InvalidStateError: the candidate is not awaiting reconciliation
        """
        now = self._now(now)
        async with self._locks.lock_for(candidate_id, campaign_id):
            state = await self._require_state(candidate_id, campaign_id)
            awaiting = state.action_status == ActionStatus.DISPATCHING and (
                state.needs_reconciliation or self._is_stalled(state, now)
            )
            if not awaiting:
                raise InvalidStateError(f"Candidate {candidate_id} has no dispatch awaiting reconciliation")

            campaign = await self.require_campaign(campaign_id)
            dispatch = await self._dispatch_from_state(state, campaign)

            await self._record(
                state, "dispatch_reconciled", True, now,
                outcome=outcome.value, note=note, stage_position=dispatch.stage.position,
            )

            if outcome == ReconcileOutcome.RESET:
                state.defer(now, now)
                await self._repository.save_state(state)
                await self._apply_requested_withdrawal(state, now)
                return state

            result = ExecutionResult(
                success=outcome == ReconcileOutcome.SENT,
                error_message=None if outcome == ReconcileOutcome.SENT else (note or "reconciled as failed"),
            )
            await self._apply_result_locked(state, dispatch, result, now)
            return state

    # =====================================================================
    # Queries
    # =====================================================================

    async def _require_state(self, candidate_id: str, campaign_id: str) -> CandidatePipelineState:
        state = await self._repository.get_state(candidate_id, campaign_id)
        if state is None:
            raise NotFoundError(f"Candidate {candidate_id} is not enrolled in campaign {campaign_id}")
        return state

    async def get_state(self, candidate_id: str, campaign_id: str) -> CandidatePipelineState:
        return await self._require_state(candidate_id, campaign_id)

    async def list_states(self, campaign_id: str, include_terminal: bool = True) -> List[CandidatePipelineState]:
        await self.require_campaign(campaign_id)
        return await self._repository.list_states(campaign_id, include_terminal=include_terminal)

    async def usage(self, campaign_id: str, now: Optional[datetime] = None) -> dict:
        """Rate-limit usage report for a campaign."""
        campaign = await self.require_campaign(campaign_id)
        self._rate_limiter.configure(campaign.id, campaign.rate_limits)
        return await self._rate_limiter.usage(campaign_id, self._now(now))

    # =====================================================================
    # Audit
    # =====================================================================

    async def _record(
        self,
        state: CandidatePipelineState,
        action_type: str,
        success: bool,
        now: datetime,
        error_message: Optional[str] = None,
        **details
    ) -> None:
        await self._audit.emit(AgentAction(
            candidate_id=state.candidate_id,
            campaign_id=state.campaign_id,
            action_type=action_type,
            success=success,
            error_message=error_message,
            details={k: v for k, v in details.items() if v is not None},
            created_at=now,
        ))
