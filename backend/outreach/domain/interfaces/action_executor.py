"""
Action Executor Interface
Abstract base class for the automation layer that performs outreach actions
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from outreach.domain.models.campaign import Campaign
from outreach.domain.models.candidate import Candidate
from outreach.domain.models.pipeline import ActionType


class ExecutionResult(BaseModel):
    """Outcome reported by an executor"""
    success: bool
    error_message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ActionExecutor(ABC):
    """
    Abstract base class for action executors (browser automation etc).

    Only invoked after approval or auto-clearance; may block for a long time.
    Implementations report failures through ExecutionResult or by raising
    ExecutionFailure.
    """

    @abstractmethod
    async def execute(
        self,
        action_type: ActionType,
        candidate: Candidate,
        campaign: Campaign,
        content: Optional[str]
    ) -> ExecutionResult:
        """
        Perform one outreach action.

        Args:
            action_type: Action to perform
            candidate: Target candidate
            campaign: Campaign on whose behalf the action runs
            content: Approved or generated text (None for text-less actions)

        Returns:
            ExecutionResult
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Executor name"""
        pass
