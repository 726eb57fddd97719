"""
Outreach Engine Errors
Error taxonomy shared by the domain services and the API layer
"""
from typing import List, Optional


class OutreachError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class PipelineValidationError(OutreachError):
    """Raised when a stage list is malformed. Rejected at save time."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        self.issues = issues or []
        super().__init__(message)


class NotFoundError(OutreachError):
    """Referenced campaign, candidate, stage or approval request does not exist."""


class ApprovalConflictError(OutreachError):
    """A pending approval already exists for the (candidate, campaign) pair."""


class InvalidStateError(OutreachError):
    """Transition requested from a state that does not allow it."""


class ExecutionFailure(OutreachError):
    """The action executor reported (or raised) a failed action."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.details = details or {}
        super().__init__(message)


class ExecutionTimeout(OutreachError):
    """The action executor did not report back in time. Outcome unknown."""

    REASON = "timed out, outcome unknown"

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{self.REASON} after {timeout_seconds:.0f}s")
