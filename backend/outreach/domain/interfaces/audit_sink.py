"""
Audit Sink Interface
Append-only destination for AgentAction records
"""
from abc import ABC, abstractmethod

from outreach.domain.models.agent_action import AgentAction


class AuditSink(ABC):
    """The engine emits to, and never queries, an audit sink."""

    @abstractmethod
    async def emit(self, action: AgentAction) -> None:
        """Append one audit record"""
        pass
