"""
Engine Wiring
Builds the orchestrator and its collaborators from settings and YAML config
"""
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from outreach.core.config import ConfigManager, Settings, get_settings
from outreach.domain.interfaces.action_executor import ActionExecutor
from outreach.domain.interfaces.audit_sink import AuditSink
from outreach.domain.interfaces.pipeline_repository import PipelineRepository
from outreach.domain.interfaces.rate_limit_store import RateLimitStore
from outreach.domain.models.rate_limit_config import RateLimitConfig
from outreach.domain.services.approval_queue import ApprovalQueue
from outreach.domain.services.candidate_locks import CandidateLockRegistry
from outreach.domain.services.message_generator import TemplateMessageGenerator
from outreach.domain.services.orchestrator import Orchestrator
from outreach.domain.services.pipeline_catalog import PipelineCatalog
from outreach.domain.services.rate_limiter import RateLimiter
from outreach.domain.services.scoring_engine import ScoringEngine
from outreach.infrastructure.audit import CompositeAuditSink, LoggingAuditSink, RedisAuditSink
from outreach.infrastructure.executor import ExecutorFactory
from outreach.infrastructure.rate_limits import InMemoryRateLimitStore, RedisRateLimitStore
from outreach.infrastructure.storage import InMemoryPipelineRepository

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Everything the API and the worker share."""
    settings: Settings
    config: ConfigManager
    repository: PipelineRepository
    audit: AuditSink
    executor: ActionExecutor
    rate_limiter: RateLimiter
    catalog: PipelineCatalog
    approvals: ApprovalQueue
    generator: TemplateMessageGenerator
    orchestrator: Orchestrator
    _closers: List[Callable] = field(default_factory=list)

    def campaign_defaults(self) -> Dict[str, Any]:
        """Campaign field defaults taken from the YAML config."""
        return {
            "rate_limits": RateLimitConfig(**self.config.section("rate_limits")),
            "rejection_policy": self.config.get("approvals.rejection_policy", "retry_stage"),
            "rejection_retry_hours": self.config.get("approvals.rejection_retry_hours", 24),
            "retry_delay_seconds": self.config.get("retries.retry_delay_seconds", 3600),
        }

    @property
    def default_max_attempts(self) -> int:
        return int(self.config.get("retries.max_attempts", 3))

    async def close(self) -> None:
        await self.orchestrator.drain()
        for closer in self._closers:
            await closer()


def _build_repository(settings: Settings) -> PipelineRepository:
    if settings.storage_backend == "supabase":
        from supabase import create_client
        from outreach.infrastructure.storage import SupabasePipelineRepository

        if not settings.supabase_url or not settings.supabase_service_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
        return SupabasePipelineRepository(create_client(settings.supabase_url, settings.supabase_service_key))
    return InMemoryPipelineRepository()


async def build_engine(
    settings: Optional[Settings] = None,
    config: Optional[ConfigManager] = None,
    repository: Optional[PipelineRepository] = None,
    executor: Optional[ActionExecutor] = None,
    audit_sink: Optional[AuditSink] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
    rng: Optional[random.Random] = None,
    clock: Optional[Callable[[], datetime]] = None
) -> Engine:
    """
    Wire the engine. Explicit collaborators win over the configured backends.
    """
    settings = settings or get_settings()
    config = config or ConfigManager(env=settings.environment)
    closers: List[Callable] = []

    if repository is None:
        repository = _build_repository(settings)

    if audit_sink is None:
        sinks: List[AuditSink] = [LoggingAuditSink()]
        if settings.audit_backend == "redis":
            redis_sink = await RedisAuditSink.from_url(
                settings.redis_url,
                config.get("redis.audit_channel", "outreach:audit")
            )
            sinks.append(redis_sink)
            closers.append(redis_sink.close)
        audit_sink = CompositeAuditSink(sinks)

    if executor is None:
        executor = ExecutorFactory.create(settings.executor_backend)

    if rate_limit_store is None:
        if settings.rate_limit_backend == "redis":
            rate_limit_store = await RedisRateLimitStore.from_url(
                settings.redis_url,
                config.get("redis.rate_limit_prefix", "outreach:ratelimit")
            )
            closers.append(rate_limit_store.close)
        else:
            rate_limit_store = InMemoryRateLimitStore()

    locks = CandidateLockRegistry()
    rate_limiter = RateLimiter(
        rate_limit_store,
        rng=rng,
        default_config=RateLimitConfig(**config.section("rate_limits"))
    )
    catalog = PipelineCatalog(repository)
    approvals = ApprovalQueue(repository, audit_sink, locks)
    generator = TemplateMessageGenerator(
        recruiter_name=settings.recruiter_name,
        qualify_link=settings.qualify_link,
    )
    orchestrator = Orchestrator(
        repository=repository,
        catalog=catalog,
        approvals=approvals,
        rate_limiter=rate_limiter,
        scoring=ScoringEngine(),
        executor=executor,
        generator=generator,
        audit_sink=audit_sink,
        locks=locks,
        execution_timeout_seconds=config.get("orchestrator.execution_timeout_seconds", 300),
        max_parallel_evaluations=config.get("orchestrator.max_parallel_evaluations", 16),
        clock=clock,
    )

    logger.info(
        f"Engine ready (storage={settings.storage_backend}, audit={settings.audit_backend}, "
        f"rate_limits={settings.rate_limit_backend}, executor={executor.name})"
    )
    return Engine(
        settings=settings,
        config=config,
        repository=repository,
        audit=audit_sink,
        executor=executor,
        rate_limiter=rate_limiter,
        catalog=catalog,
        approvals=approvals,
        generator=generator,
        orchestrator=orchestrator,
        _closers=closers,
    )
