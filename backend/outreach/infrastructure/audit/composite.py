"""
Composite Audit Sink
Fans one record out to several sinks in order
"""
from typing import List

from outreach.domain.interfaces.audit_sink import AuditSink
from outreach.domain.models.agent_action import AgentAction


class CompositeAuditSink(AuditSink):

    def __init__(self, sinks: List[AuditSink]):
        self.sinks = list(sinks)

    async def emit(self, action: AgentAction) -> None:
        for sink in self.sinks:
            await sink.emit(action)
