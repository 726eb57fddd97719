"""
Pipeline Definition Models
Ordered, versioned stage templates belonging to a campaign
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import FrozenSet, List, Optional, Sequence, Tuple
from datetime import datetime
from enum import Enum

from outreach.domain.errors import NotFoundError
from outreach.utils.time_utils import utcnow


class ActionType(str, Enum):
    """Outreach action performed by a stage"""
    CONNECTION_REQUEST = "connection_request"
    MESSAGE = "message"
    FOLLOW_UP = "follow_up"
    WAIT = "wait"
    REMINDER = "reminder"
    INMAIL = "inmail"
    PROFILE_VIEW = "profile_view"
    WITHDRAW = "withdraw"


# Actions counted against the daily message cap
MESSAGE_ACTIONS: FrozenSet[ActionType] = frozenset({
    ActionType.MESSAGE,
    ActionType.FOLLOW_UP,
    ActionType.INMAIL,
})

# Actions that carry outbound text
TEXT_ACTIONS: FrozenSet[ActionType] = frozenset({
    ActionType.CONNECTION_REQUEST,
    ActionType.MESSAGE,
    ActionType.FOLLOW_UP,
    ActionType.INMAIL,
})


class PipelineStageTemplate(BaseModel):
    """One configured step of an outreach sequence."""

    model_config = ConfigDict(frozen=True)

    position: int = Field(..., ge=0, description="0-based order within the pipeline")
    name: str = Field(..., min_length=1, max_length=200)
    action_type: ActionType
    delay_days: int = Field(
        default=0,
        ge=0,
        description="Days after the previous stage completed before this stage is eligible"
    )
    requires_approval: bool = Field(default=True)
    template_id: Optional[str] = Field(None, description="Message template reference")
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Executor attempts before the candidate is marked failed"
    )


class PipelineDefinition(BaseModel):
    """
    Immutable stage list for one campaign version.

    Editing a campaign's stages publishes a new version; candidates keep the
    version they started with.
    """

    model_config = ConfigDict(frozen=True)

    campaign_id: str
    version: int = Field(..., ge=1)
    stages: Tuple[PipelineStageTemplate, ...]
    created_at: datetime = Field(default_factory=utcnow)

    @staticmethod
    def check_stages(stages: Sequence[PipelineStageTemplate]) -> List[str]:
        """Return validation issues for a stage list (empty when valid)."""
        issues = []
        if not stages:
            issues.append("pipeline must have at least one stage")
            return issues

        positions = [stage.position for stage in stages]
        if sorted(positions) != list(range(len(stages))):
            issues.append(
                f"stage positions must be contiguous from 0, got {sorted(positions)}"
            )

        for stage in stages:
            if stage.delay_days < 0:
                issues.append(f"stage {stage.position} has negative delay_days")
        return issues

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, v: Tuple[PipelineStageTemplate, ...]) -> Tuple[PipelineStageTemplate, ...]:
        issues = cls.check_stages(v)
        if issues:
            raise ValueError("; ".join(issues))
        return tuple(sorted(v, key=lambda s: s.position))

    @property
    def last_index(self) -> int:
        return len(self.stages) - 1

    def stage_at(self, index: int) -> PipelineStageTemplate:
        """Stage template at a position. Raises NotFoundError when out of range."""
        if index < 0 or index >= len(self.stages):
            raise NotFoundError(
                f"Stage {index} not found in pipeline v{self.version} of campaign {self.campaign_id}"
            )
        return self.stages[index]

    def next_index(self, current: int) -> Optional[int]:
        """Next stage position, or None when `current` is the last stage (terminal)."""
        if current >= self.last_index:
            return None
        return current + 1
