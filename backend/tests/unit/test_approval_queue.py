"""
Unit tests for the approval queue
"""
from datetime import datetime, timedelta

import pytest
import pytz

from outreach.domain.errors import ApprovalConflictError, InvalidStateError, NotFoundError
from outreach.domain.models.approval import ApprovalDecision, ApprovalStatus, StageRef
from outreach.domain.models.pipeline import ActionType
from outreach.domain.models.pipeline_state import ActionStatus, CandidatePipelineState
from outreach.domain.services.approval_queue import ApprovalQueue
from outreach.domain.services.candidate_locks import CandidateLockRegistry
from outreach.infrastructure.audit import InMemoryAuditSink
from outreach.infrastructure.storage import InMemoryPipelineRepository

NOW = datetime(2024, 12, 9, 15, 0, tzinfo=pytz.UTC)
STAGE = StageRef(pipeline_version=1, position=0, name="Connect", action_type=ActionType.CONNECTION_REQUEST)


@pytest.fixture
def repository():
    return InMemoryPipelineRepository()


@pytest.fixture
def audit():
    return InMemoryAuditSink()


@pytest.fixture
def queue(repository, audit):
    return ApprovalQueue(repository, audit, CandidateLockRegistry())


async def enroll(repository, candidate_id="cand-1"):
    await repository.save_state(CandidatePipelineState(
        candidate_id=candidate_id, campaign_id="camp-1", pipeline_version=1,
        enrolled_at=NOW, stage_eligible_at=NOW,
    ))


class TestApprovalQueue:
    """Tests for the approval lifecycle"""

    @pytest.mark.asyncio
    async def test_open_sets_awaiting(self, queue, repository, audit):
        """Opening a request blocks the candidate on approval"""
        await enroll(repository)
        request = await queue.open("cand-1", "camp-1", STAGE, "Hi Jordan", context="warm lead", now=NOW)

        state = await repository.get_state("cand-1", "camp-1")
        assert request.status == ApprovalStatus.PENDING
        assert state.action_status == ActionStatus.AWAITING_APPROVAL
        assert state.pending_approval.id == request.id

        opened = audit.of_type("approval_opened")
        assert len(opened) == 1
        assert opened[0].details["request_id"] == request.id
        assert opened[0].details["stage_position"] == 0

    @pytest.mark.asyncio
    async def test_second_pending_conflicts(self, queue, repository):
        """At most one pending request per candidate and campaign"""
        await enroll(repository)
        await queue.open("cand-1", "camp-1", STAGE, "Hi", now=NOW)
        with pytest.raises(ApprovalConflictError):
            await queue.open("cand-1", "camp-1", STAGE, "Hi again", now=NOW)

    @pytest.mark.asyncio
    async def test_open_unknown_candidate(self, queue):
        """Opening for an unenrolled pair raises NotFoundError"""
        with pytest.raises(NotFoundError):
            await queue.open("ghost", "camp-1", STAGE, "Hi", now=NOW)

    @pytest.mark.asyncio
    async def test_approve_with_edit(self, queue, repository, audit):
        """An edited approval dispatches the approver's text"""
        await enroll(repository)
        request = await queue.open("cand-1", "camp-1", STAGE, "Hi", now=NOW)
        decided = await queue.decide(
            request.id, ApprovalDecision.APPROVED, "recruiter@example.com",
            approved_text="Hello Jordan", now=NOW + timedelta(minutes=5),
        )

        assert decided.status == ApprovalStatus.APPROVED
        assert decided.final_text == "Hello Jordan"
        assert decided.decided_by == "recruiter@example.com"

        state = await repository.get_state("cand-1", "camp-1")
        assert state.action_status == ActionStatus.IDLE
        assert state.approved_for_current_stage().id == request.id
        assert audit.of_type("approval_approved")[0].details["edited"] is True

    @pytest.mark.asyncio
    async def test_first_decision_wins(self, queue, repository):
        """A second decision on the same request is rejected"""
        await enroll(repository)
        request = await queue.open("cand-1", "camp-1", STAGE, "Hi", now=NOW)
        await queue.decide(request.id, ApprovalDecision.REJECTED, "alice", now=NOW)

        with pytest.raises(InvalidStateError):
            await queue.decide(request.id, ApprovalDecision.APPROVED, "bob", now=NOW)

        assert (await queue.get(request.id)).decided_by == "alice"

    @pytest.mark.asyncio
    async def test_reject_records_pending_rejection(self, queue, repository):
        """Rejection leaves a marker for the orchestrator's rejection policy"""
        await enroll(repository)
        request = await queue.open("cand-1", "camp-1", STAGE, "Hi", now=NOW)
        await queue.decide(request.id, ApprovalDecision.REJECTED, "alice", now=NOW)

        state = await repository.get_state("cand-1", "camp-1")
        assert state.pending_rejection_id == request.id
        assert state.action_status == ActionStatus.IDLE

    @pytest.mark.asyncio
    async def test_sent_and_failed_require_approval(self, queue, repository, audit):
        """Only approved requests can be marked sent or failed"""
        await enroll(repository)
        request = await queue.open("cand-1", "camp-1", STAGE, "Hi", now=NOW)
        with pytest.raises(InvalidStateError):
            await queue.mark_sent(request.id, now=NOW)

        await queue.decide(request.id, ApprovalDecision.APPROVED, "alice", now=NOW)
        sent = await queue.mark_sent(request.id, now=NOW)
        assert sent.status == ApprovalStatus.SENT
        assert sent.sent_at == NOW

        with pytest.raises(InvalidStateError):
            await queue.mark_failed(request.id, "late failure", now=NOW)

    @pytest.mark.asyncio
    async def test_mark_failed(self, queue, repository, audit):
        """Failures are audited as unsuccessful"""
        await enroll(repository)
        request = await queue.open("cand-1", "camp-1", STAGE, "Hi", now=NOW)
        await queue.decide(request.id, ApprovalDecision.APPROVED, "alice", now=NOW)
        failed = await queue.mark_failed(request.id, "executor failed", now=NOW)

        assert failed.status == ApprovalStatus.FAILED
        assert failed.failed_reason == "executor failed"
        record = audit.of_type("approval_failed")[0]
        assert record.success is False
        assert record.error_message == "executor failed"

    @pytest.mark.asyncio
    async def test_unknown_request(self, queue):
        """Unknown request ids raise NotFoundError"""
        with pytest.raises(NotFoundError):
            await queue.decide("missing", ApprovalDecision.APPROVED, "alice", now=NOW)

    @pytest.mark.asyncio
    async def test_list_and_counts(self, queue, repository):
        """Listing filters by status and counts cover every status"""
        await enroll(repository, "cand-1")
        await enroll(repository, "cand-2")
        first = await queue.open("cand-1", "camp-1", STAGE, "Hi", now=NOW)
        await queue.open("cand-2", "camp-1", STAGE, "Hi", now=NOW + timedelta(seconds=1))
        await queue.decide(first.id, ApprovalDecision.APPROVED, "alice", now=NOW)

        pending = await queue.list_requests("camp-1", ApprovalStatus.PENDING)
        assert [r.candidate_id for r in pending] == ["cand-2"]
        assert len(await queue.list_requests("camp-1")) == 2

        counts = await queue.counts("camp-1")
        assert counts == {"pending": 1, "approved": 1, "rejected": 0, "sent": 0, "failed": 0}
