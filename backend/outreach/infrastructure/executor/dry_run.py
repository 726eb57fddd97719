"""
Dry-Run Action Executor
Logs actions instead of driving the browser automation layer
"""
import logging
from typing import List, Optional, Tuple

from outreach.domain.interfaces.action_executor import ActionExecutor, ExecutionResult
from outreach.domain.models.campaign import Campaign
from outreach.domain.models.candidate import Candidate
from outreach.domain.models.pipeline import ActionType

logger = logging.getLogger(__name__)


class DryRunActionExecutor(ActionExecutor):
    """Always succeeds; remembers what it would have done."""

    def __init__(self):
        self.executed: List[Tuple[ActionType, str, str, Optional[str]]] = []

    @property
    def name(self) -> str:
        return "dry_run"

    async def execute(
        self,
        action_type: ActionType,
        candidate: Candidate,
        campaign: Campaign,
        content: Optional[str]
    ) -> ExecutionResult:
        self.executed.append((action_type, candidate.id, campaign.id, content))
        logger.info(
            f"[dry-run] {action_type.value} -> {candidate.name} ({candidate.id}) "
            f"for campaign {campaign.id}"
        )
        return ExecutionResult(
            success=True,
            details={
                "dry_run": True,
                "linkedin_url": candidate.linkedin_url,
                "content_length": len(content) if content else 0,
            },
        )
