"""Interfaces to collaborators outside the engine"""
from .action_executor import ActionExecutor, ExecutionResult
from .audit_sink import AuditSink
from .message_generator import MessageGenerator, ProposedContent
from .pipeline_repository import PipelineRepository
from .rate_limit_store import RateLimitStore

__all__ = [
    "ActionExecutor",
    "ExecutionResult",
    "AuditSink",
    "MessageGenerator",
    "ProposedContent",
    "PipelineRepository",
    "RateLimitStore",
]
