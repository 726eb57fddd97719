"""Domain services"""
from .candidate_locks import CandidateLockRegistry
from .rate_limiter import RateLimitDecision, RateLimiter, Reservation
from .scoring_engine import ScoringEngine
from .pipeline_catalog import PipelineCatalog
from .approval_queue import ApprovalQueue
from .message_generator import MessageTemplate, TemplateMessageGenerator, build_merge_context
from .orchestrator import Orchestrator, ReconcileOutcome, TickReport

__all__ = [
    "CandidateLockRegistry",
    "RateLimitDecision",
    "RateLimiter",
    "Reservation",
    "ScoringEngine",
    "PipelineCatalog",
    "ApprovalQueue",
    "MessageTemplate",
    "TemplateMessageGenerator",
    "build_merge_context",
    "Orchestrator",
    "ReconcileOutcome",
    "TickReport",
]
