"""
Rate Limit Usage Model
Counters, reservations and usage snapshots shared by the limiter and its stores
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import pytz

from outreach.domain.models.pipeline import ActionType, MESSAGE_ACTIONS

WEEK = timedelta(hours=168)

# Daily counter names
CONNECTIONS = "connection_request"
MESSAGES = "message"


def counter_for(action_type: ActionType) -> Optional[str]:
    """Daily counter an action is charged against (None = uncapped)."""
    if action_type == ActionType.CONNECTION_REQUEST:
        return CONNECTIONS
    if action_type in MESSAGE_ACTIONS:
        return MESSAGES
    return None


def to_timestamp(value: Optional[datetime]) -> str:
    return repr(value.timestamp()) if value is not None else ""


def from_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(float(value), pytz.UTC)


@dataclass(frozen=True)
class Reservation:
    """
    Usage recorded for one dispatch.

    Stores keep reservations by `token` so a failed dispatch can be given
    back later, possibly from another process.
    """
    token: str
    campaign_id: str
    action_type: ActionType
    at: datetime
    day: date
    counter: Optional[str]
    previous_last_dispatch_at: Optional[datetime]
    previous_next_eligible_at: Optional[datetime]

    def to_mapping(self) -> Dict[str, str]:
        """Flat string mapping for hash-based stores."""
        return {
            "campaign_id": self.campaign_id,
            "action_type": self.action_type.value,
            "at": to_timestamp(self.at),
            "day": self.day.isoformat(),
            "counter": self.counter or "",
            "previous_last_dispatch_at": to_timestamp(self.previous_last_dispatch_at),
            "previous_next_eligible_at": to_timestamp(self.previous_next_eligible_at),
        }

    @classmethod
    def from_mapping(cls, token: str, data: Dict[str, str]) -> "Reservation":
        return cls(
            token=token,
            campaign_id=data["campaign_id"],
            action_type=ActionType(data["action_type"]),
            at=from_timestamp(data["at"]),
            day=date.fromisoformat(data["day"]),
            counter=data.get("counter") or None,
            previous_last_dispatch_at=from_timestamp(data.get("previous_last_dispatch_at")),
            previous_next_eligible_at=from_timestamp(data.get("previous_next_eligible_at")),
        )


@dataclass
class UsageSnapshot:
    """A campaign's usage as seen at one instant."""
    daily: Dict[str, int] = field(default_factory=dict)
    connections: List[datetime] = field(default_factory=list)  # last 168h, oldest first
    last_dispatch_at: Optional[datetime] = None
    next_eligible_at: Optional[datetime] = None

    def used(self, counter: str) -> int:
        return self.daily.get(counter, 0)
