"""
Logging Audit Sink
Writes every AgentAction to the application log
"""
import logging

from outreach.domain.interfaces.audit_sink import AuditSink
from outreach.domain.models.agent_action import AgentAction

logger = logging.getLogger(__name__)


class LoggingAuditSink(AuditSink):
    """Default sink: one log line per audit record."""

    async def emit(self, action: AgentAction) -> None:
        message = (
            f"[audit] {action.action_type} candidate={action.candidate_id} "
            f"campaign={action.campaign_id} success={action.success}"
        )
        if action.error_message:
            message += f" error={action.error_message}"
        if action.success:
            logger.info(message)
        else:
            logger.warning(message)
