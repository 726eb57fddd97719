"""
In-Memory Audit Sink
"""
from typing import List, Optional

from outreach.domain.interfaces.audit_sink import AuditSink
from outreach.domain.models.agent_action import AgentAction


class InMemoryAuditSink(AuditSink):
    """Keeps emitted records in order; used by tests and the dev API."""

    def __init__(self, max_records: Optional[int] = None):
        self._records: List[AgentAction] = []
        self._max_records = max_records

    async def emit(self, action: AgentAction) -> None:
        self._records.append(action)
        if self._max_records and len(self._records) > self._max_records:
            del self._records[: len(self._records) - self._max_records]

    @property
    def records(self) -> List[AgentAction]:
        return list(self._records)

    def of_type(self, action_type: str) -> List[AgentAction]:
        return [r for r in self._records if r.action_type == action_type]

    def for_candidate(self, candidate_id: str, campaign_id: Optional[str] = None) -> List[AgentAction]:
        return [
            r for r in self._records
            if r.candidate_id == candidate_id and (campaign_id is None or r.campaign_id == campaign_id)
        ]
