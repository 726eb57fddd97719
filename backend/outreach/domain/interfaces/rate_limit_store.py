"""
Rate Limit Store Interface
Shared usage storage so every API and worker process charges the same caps
"""
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import AsyncContextManager, Optional

from outreach.domain.models.rate_limit_usage import Reservation, UsageSnapshot


class RateLimitStore(ABC):
    """
    Usage counters for every campaign.

    Callers hold `lock(campaign_id)` around a snapshot-check-record sequence;
    the lock must exclude every process sharing the store.
    """

    @abstractmethod
    def lock(self, campaign_id: str) -> AsyncContextManager:
        """Exclusive lock over one campaign's usage"""
        pass

    @abstractmethod
    async def snapshot(self, campaign_id: str, day: date, now: datetime) -> UsageSnapshot:
        """Usage for local `day`, with connections older than 168h dropped"""
        pass

    @abstractmethod
    async def record(self, reservation: Reservation, next_eligible_at: datetime) -> None:
        """Charge a dispatch and store its reservation"""
        pass

    @abstractmethod
    async def release(self, campaign_id: str, token: str) -> bool:
        """Give back a reservation. Returns False when it is unknown."""
        pass

    @abstractmethod
    async def reset(self, campaign_id: Optional[str] = None) -> None:
        """Drop usage for one campaign, or all of them"""
        pass
