"""
Shared fixtures for the outreach engine test suites
"""
import asyncio
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import pytest
import pytz

from outreach.core.config import ConfigManager, Settings
from outreach.core.engine import Engine
from outreach.domain.interfaces.action_executor import ActionExecutor, ExecutionResult
from outreach.domain.models.campaign import Campaign, CampaignStatus
from outreach.domain.models.candidate import Candidate
from outreach.domain.models.pipeline import ActionType, PipelineStageTemplate
from outreach.domain.models.rate_limit_config import RateLimitConfig
from outreach.domain.services.approval_queue import ApprovalQueue
from outreach.domain.services.candidate_locks import CandidateLockRegistry
from outreach.domain.services.message_generator import TemplateMessageGenerator
from outreach.domain.services.orchestrator import Orchestrator
from outreach.domain.services.pipeline_catalog import PipelineCatalog
from outreach.domain.services.rate_limiter import RateLimiter
from outreach.domain.services.scoring_engine import ScoringEngine
from outreach.infrastructure.audit import InMemoryAuditSink
from outreach.infrastructure.rate_limits import InMemoryRateLimitStore
from outreach.infrastructure.storage import InMemoryPipelineRepository

# Monday, inside a 09:00-18:00 UTC window
MONDAY_3PM = datetime(2024, 12, 9, 15, 0, tzinfo=pytz.UTC)


class FakeClock:
    """Callable clock the orchestrator reads for dispatch outcome times."""

    def __init__(self, now: datetime = MONDAY_3PM):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedExecutor(ActionExecutor):
    """
    Returns scripted outcomes in order (True/False, ExecutionResult or an
    exception to raise), then succeeds. `delay` makes each call sleep.
    """

    def __init__(self, outcomes: Optional[list] = None, delay: float = 0):
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: List[tuple] = []

    @property
    def name(self) -> str:
        return "scripted"

    async def execute(self, action_type, candidate, campaign, content) -> ExecutionResult:
        self.calls.append((action_type, candidate.id, content))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, ExecutionResult):
            return outcome
        return ExecutionResult(success=outcome, error_message=None if outcome else "executor failed")


def utc_limits(**overrides) -> RateLimitConfig:
    """Rate limits on a UTC 09:00-18:00 window with no spacing."""
    values = dict(timezone="UTC", min_delay_seconds=0, max_delay_seconds=0)
    values.update(overrides)
    return RateLimitConfig(**values)


def stage(position: int, action_type: ActionType, **kwargs) -> PipelineStageTemplate:
    return PipelineStageTemplate(
        position=position,
        name=kwargs.pop("name", f"{action_type.value}-{position}"),
        action_type=action_type,
        **kwargs
    )


class Harness:
    """
    Orchestrator wired to in-memory collaborators. Passing another harness's
    repository and store stands in for a second process (or a restart).
    """

    def __init__(
        self,
        executor: Optional[ActionExecutor] = None,
        timeout: float = 300,
        repository: Optional[InMemoryPipelineRepository] = None,
        rate_limit_store: Optional[InMemoryRateLimitStore] = None
    ):
        self.clock = FakeClock()
        self.repository = repository or InMemoryPipelineRepository()
        self.audit = InMemoryAuditSink()
        self.executor = executor or ScriptedExecutor()
        self.locks = CandidateLockRegistry()
        self.rate_limit_store = rate_limit_store or InMemoryRateLimitStore()
        self.rate_limiter = RateLimiter(self.rate_limit_store)
        self.catalog = PipelineCatalog(self.repository)
        self.approvals = ApprovalQueue(self.repository, self.audit, self.locks)
        self.generator = TemplateMessageGenerator(recruiter_name="Sam Recruiter")
        self.orchestrator = Orchestrator(
            repository=self.repository,
            catalog=self.catalog,
            approvals=self.approvals,
            rate_limiter=self.rate_limiter,
            scoring=ScoringEngine(),
            executor=self.executor,
            generator=self.generator,
            audit_sink=self.audit,
            locks=self.locks,
            execution_timeout_seconds=timeout,
            clock=self.clock,
        )

    async def campaign(
        self,
        stages: Sequence[PipelineStageTemplate],
        campaign_id: str = "camp-1",
        limits: Optional[RateLimitConfig] = None,
        **fields
    ) -> Campaign:
        campaign = Campaign(
            id=campaign_id,
            title=f"Campaign {campaign_id}",
            status=CampaignStatus.ACTIVE,
            rate_limits=limits or utc_limits(),
            **fields
        )
        await self.orchestrator.create_campaign(campaign)
        await self.orchestrator.publish_pipeline(campaign_id, stages)
        return campaign

    async def enroll(self, candidate_id: str, campaign_id: str = "camp-1", **fields):
        candidate = Candidate(id=candidate_id, name=fields.pop("name", "Jordan Lee"), **fields)
        return await self.orchestrator.enroll(candidate, campaign_id, now=self.clock.now)

    async def tick(self):
        report = await self.orchestrator.tick(self.clock.now)
        await self.orchestrator.drain()
        return report

    async def state(self, candidate_id: str, campaign_id: str = "camp-1"):
        return await self.repository.get_state(candidate_id, campaign_id)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def harness():
    return Harness()


@pytest.fixture
def make_harness():
    return Harness


@pytest.fixture
def limits():
    return utc_limits


@pytest.fixture
def make_stage():
    return stage


@pytest.fixture
def make_executor():
    return ScriptedExecutor


@pytest.fixture
def engine(harness):
    """Engine over the harness components, as the API and worker see it."""
    return Engine(
        settings=Settings(_env_file=None),
        config=ConfigManager(env="development"),
        repository=harness.repository,
        audit=harness.audit,
        executor=harness.executor,
        rate_limiter=harness.rate_limiter,
        catalog=harness.catalog,
        approvals=harness.approvals,
        generator=harness.generator,
        orchestrator=harness.orchestrator,
    )
