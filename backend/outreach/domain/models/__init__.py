"""Domain models"""

from .rate_limit_config import RateLimitConfig
from .job_spec import DEFAULT_WEIGHTS, JobSpec, ScoringWeights
from .candidate import Candidate, CandidateProfile, Education, WorkExperience
from .scoring import ScoreBreakdown, ScoreBucket
from .campaign import Campaign, CampaignStatus, RejectionPolicy

# Pipeline models
from .pipeline import (
    ActionType,
    MESSAGE_ACTIONS,
    TEXT_ACTIONS,
    PipelineStageTemplate,
    PipelineDefinition,
)
from .rate_limit_usage import Reservation, UsageSnapshot, counter_for
from .approval import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    StageRef,
)
from .pipeline_state import (
    ActionStatus,
    CandidatePipelineState,
    TerminalState,
)
from .agent_action import AgentAction

__all__ = [
    "RateLimitConfig",
    "DEFAULT_WEIGHTS",
    "JobSpec",
    "ScoringWeights",
    "Candidate",
    "CandidateProfile",
    "Education",
    "WorkExperience",
    "ScoreBreakdown",
    "ScoreBucket",
    "Campaign",
    "CampaignStatus",
    "RejectionPolicy",
    # Pipeline models
    "ActionType",
    "MESSAGE_ACTIONS",
    "TEXT_ACTIONS",
    "PipelineStageTemplate",
    "PipelineDefinition",
    "Reservation",
    "UsageSnapshot",
    "counter_for",
    "ApprovalDecision",
    "ApprovalRequest",
    "ApprovalStatus",
    "StageRef",
    "ActionStatus",
    "CandidatePipelineState",
    "TerminalState",
    "AgentAction",
]
