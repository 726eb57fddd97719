"""
Agent Action Model
Append-only audit record of an attempted action or state transition
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
from datetime import datetime
import uuid

from outreach.utils.time_utils import utcnow


class AgentAction(BaseModel):
    """Immutable audit record. Never mutated or deleted once emitted."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    candidate_id: str
    campaign_id: str
    action_type: str
    success: bool
    error_message: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    def to_event(self) -> dict:
        """JSON-safe payload for notification sinks."""
        return self.model_dump(mode="json")
