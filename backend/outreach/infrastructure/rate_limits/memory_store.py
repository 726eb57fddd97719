"""
In-Memory Rate Limit Store
Process-local usage counters for development, tests and single-process runs
"""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Deque, Dict, Optional, Tuple

from outreach.domain.interfaces.rate_limit_store import RateLimitStore
from outreach.domain.models.rate_limit_usage import CONNECTIONS, WEEK, Reservation, UsageSnapshot


@dataclass
class _CampaignUsage:
    daily: Dict[Tuple[date, str], int] = field(default_factory=dict)
    connections: Deque[Tuple[datetime, str]] = field(default_factory=deque)
    last_dispatch_at: Optional[datetime] = None
    next_eligible_at: Optional[datetime] = None
    last_token: Optional[str] = None

    def prune(self, now: datetime) -> None:
        while self.connections and self.connections[0][0] <= now - WEEK:
            self.connections.popleft()


class InMemoryRateLimitStore(RateLimitStore):
    """
    Dict-backed store. Limiters sharing one instance share caps; a restart
    starts from zero, so multi-process deployments use RedisRateLimitStore.
    """

    def __init__(self):
        self._usage: Dict[str, _CampaignUsage] = {}
        self._reservations: Dict[str, Reservation] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _usage_for(self, campaign_id: str) -> _CampaignUsage:
        usage = self._usage.get(campaign_id)
        if usage is None:
            usage = _CampaignUsage()
            self._usage[campaign_id] = usage
        return usage

    def lock(self, campaign_id: str) -> asyncio.Lock:
        lock = self._locks.get(campaign_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[campaign_id] = lock
        return lock

    async def snapshot(self, campaign_id: str, day: date, now: datetime) -> UsageSnapshot:
        usage = self._usage_for(campaign_id)
        usage.prune(now)
        return UsageSnapshot(
            daily={counter: used for (d, counter), used in usage.daily.items() if d == day},
            connections=[at for at, _ in usage.connections],
            last_dispatch_at=usage.last_dispatch_at,
            next_eligible_at=usage.next_eligible_at,
        )

    async def record(self, reservation: Reservation, next_eligible_at: datetime) -> None:
        usage = self._usage_for(reservation.campaign_id)
        if reservation.counter is not None:
            key = (reservation.day, reservation.counter)
            usage.daily[key] = usage.daily.get(key, 0) + 1
        if reservation.counter == CONNECTIONS:
            usage.connections.append((reservation.at, reservation.token))
        usage.last_dispatch_at = reservation.at
        usage.next_eligible_at = next_eligible_at
        usage.last_token = reservation.token

        self._reservations[reservation.token] = reservation
        # Reservations outlive the rolling week only as garbage
        for token in [t for t, r in self._reservations.items() if r.at <= reservation.at - WEEK]:
            del self._reservations[token]

    async def release(self, campaign_id: str, token: str) -> bool:
        reservation = self._reservations.get(token)
        if reservation is None or reservation.campaign_id != campaign_id:
            return False
        del self._reservations[token]

        usage = self._usage_for(campaign_id)
        if reservation.counter is not None:
            key = (reservation.day, reservation.counter)
            if usage.daily.get(key, 0) > 0:
                usage.daily[key] -= 1
        if reservation.counter == CONNECTIONS:
            usage.connections = deque(c for c in usage.connections if c[1] != token)
        # Only roll back spacing if nothing was dispatched since
        if usage.last_token == token:
            usage.last_dispatch_at = reservation.previous_last_dispatch_at
            usage.next_eligible_at = reservation.previous_next_eligible_at
            usage.last_token = None
        return True

    async def reset(self, campaign_id: Optional[str] = None) -> None:
        if campaign_id is None:
            self._usage.clear()
            self._reservations.clear()
            return
        self._usage.pop(campaign_id, None)
        for token in [t for t, r in self._reservations.items() if r.campaign_id == campaign_id]:
            del self._reservations[token]
