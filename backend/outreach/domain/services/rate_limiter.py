"""
Rate Limiter
Per-campaign daily caps, rolling weekly connection cap, working-hour window
and dispatch spacing for outbound actions
"""
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from outreach.domain.interfaces.rate_limit_store import RateLimitStore
from outreach.domain.models.pipeline import ActionType
from outreach.domain.models.rate_limit_config import RateLimitConfig
from outreach.domain.models.rate_limit_usage import (
    CONNECTIONS,
    MESSAGES,
    WEEK,
    Reservation,
    UsageSnapshot,
    counter_for,
)
from outreach.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)

__all__ = ["RateLimitDecision", "RateLimiter", "Reservation", "counter_for"]


@dataclass(frozen=True)
class RateLimitDecision:
    """Allowed / Denied(reason) answer; `retry_at` hints when to ask again."""
    allowed: bool
    reason: str
    retry_at: Optional[datetime] = None

    def __bool__(self) -> bool:
        return self.allowed


class RateLimiter:
    """
    Applies each campaign's RateLimitConfig to usage held in a RateLimitStore.

    `try_acquire` checks and records under the store's campaign lock, so two
    evaluations of the same campaign, in this process or another one sharing
    the store, can never both pass a cap with one slot left.
    """

    def __init__(
        self,
        store: RateLimitStore,
        rng: Optional[random.Random] = None,
        default_config: Optional[RateLimitConfig] = None
    ):
        self.store = store
        self._rng = rng or random.Random()
        self._default_config = default_config or RateLimitConfig.default()
        self._configs: Dict[str, RateLimitConfig] = {}

    def configure(self, campaign_id: str, config: RateLimitConfig) -> None:
        self._configs[campaign_id] = config

    def config_for(self, campaign_id: str) -> RateLimitConfig:
        return self._configs.get(campaign_id, self._default_config)

    async def _snapshot(self, campaign_id: str, config: RateLimitConfig, now: datetime) -> UsageSnapshot:
        return await self.store.snapshot(campaign_id, config.local_date(now), now)

    # ---- checks --------------------------------------------------------

    async def can_dispatch(self, campaign_id: str, action_type: ActionType, now: datetime) -> RateLimitDecision:
        """
        Check whether an action may be dispatched now.

        Args:
            campaign_id: Campaign the action belongs to
            action_type: Action being considered
            now: Evaluation time

        Returns:
            RateLimitDecision (never raises for a denial)
        """
        now = ensure_utc(now)
        config = self.config_for(campaign_id)
        usage = await self._snapshot(campaign_id, config, now)
        return self._check(campaign_id, config, usage, action_type, now)

    def _check(
        self,
        campaign_id: str,
        config: RateLimitConfig,
        usage: UsageSnapshot,
        action_type: ActionType,
        now: datetime
    ) -> RateLimitDecision:
        # Rule 1: working-hour window and weekends
        in_window, window_reason = config.is_within_working_hours(now)
        if not in_window:
            logger.debug(f"Campaign {campaign_id} denied {action_type.value}: {window_reason}")
            return RateLimitDecision(False, window_reason, config.next_window_start(now))

        # Rule 2: daily caps (reset at local midnight)
        counter = counter_for(action_type)
        if counter is not None:
            cap = config.daily_connection_requests if counter == CONNECTIONS else config.daily_messages
            used = usage.used(counter)
            if used >= cap:
                reason = f"daily_{counter}_cap_reached_{used}/{cap}"
                logger.debug(f"Campaign {campaign_id} denied {action_type.value}: {reason}")
                return RateLimitDecision(False, reason, config.next_local_midnight(now))

        # Rule 3: rolling 168h connection cap
        if counter == CONNECTIONS:
            weekly = len(usage.connections)
            if weekly >= config.weekly_connection_cap:
                reason = f"weekly_connection_cap_reached_{weekly}/{config.weekly_connection_cap}"
                retry_at = usage.connections[0] + WEEK if usage.connections else None
                logger.debug(f"Campaign {campaign_id} denied {action_type.value}: {reason}")
                return RateLimitDecision(False, reason, retry_at)

        # Rule 4: minimum spacing since the last dispatch of any type
        if usage.last_dispatch_at is not None:
            elapsed = (now - usage.last_dispatch_at).total_seconds()
            if elapsed < config.min_delay_seconds:
                reason = f"min_delay_{elapsed:.0f}s_of_{config.min_delay_seconds}s"
                retry_at = usage.last_dispatch_at + timedelta(seconds=config.min_delay_seconds)
                logger.debug(f"Campaign {campaign_id} denied {action_type.value}: {reason}")
                return RateLimitDecision(False, reason, retry_at)

        # Rule 5: random jitter chosen after the previous dispatch
        if usage.next_eligible_at is not None and now < usage.next_eligible_at:
            wait = (usage.next_eligible_at - now).total_seconds()
            reason = f"jitter_delay_{wait:.0f}s_remaining"
            logger.debug(f"Campaign {campaign_id} denied {action_type.value}: {reason}")
            return RateLimitDecision(False, reason, usage.next_eligible_at)

        return RateLimitDecision(True, "allowed")

    # ---- recording -----------------------------------------------------

    async def record_dispatch(self, campaign_id: str, action_type: ActionType, now: datetime) -> Reservation:
        """Count a dispatch against the campaign's caps and schedule the next jitter."""
        now = ensure_utc(now)
        async with self.store.lock(campaign_id):
            config = self.config_for(campaign_id)
            usage = await self._snapshot(campaign_id, config, now)
            return await self._record(campaign_id, config, usage, action_type, now)

    async def _record(
        self,
        campaign_id: str,
        config: RateLimitConfig,
        usage: UsageSnapshot,
        action_type: ActionType,
        now: datetime
    ) -> Reservation:
        reservation = Reservation(
            token=str(uuid.uuid4()),
            campaign_id=campaign_id,
            action_type=action_type,
            at=now,
            day=config.local_date(now),
            counter=counter_for(action_type),
            previous_last_dispatch_at=usage.last_dispatch_at,
            previous_next_eligible_at=usage.next_eligible_at,
        )
        jitter = self._rng.uniform(config.min_delay_seconds, config.max_delay_seconds)
        await self.store.record(reservation, now + timedelta(seconds=jitter))

        logger.debug(
            f"Recorded {action_type.value} for campaign {campaign_id}; "
            f"next dispatch eligible in {jitter:.0f}s"
        )
        return reservation

    async def try_acquire(
        self,
        campaign_id: str,
        action_type: ActionType,
        now: datetime
    ) -> Tuple[RateLimitDecision, Optional[Reservation]]:
        """Atomic check-and-record. Returns (decision, reservation or None)."""
        now = ensure_utc(now)
        async with self.store.lock(campaign_id):
            config = self.config_for(campaign_id)
            usage = await self._snapshot(campaign_id, config, now)
            decision = self._check(campaign_id, config, usage, action_type, now)
            if not decision.allowed:
                return decision, None
            return decision, await self._record(campaign_id, config, usage, action_type, now)

    async def release(self, campaign_id: str, token: str) -> bool:
        """Give back the usage of a dispatch whose executor reported failure."""
        async with self.store.lock(campaign_id):
            released = await self.store.release(campaign_id, token)
        if released:
            logger.debug(f"Released reservation {token} for campaign {campaign_id}")
        return released

    # ---- reporting -----------------------------------------------------

    async def next_eligible_at(self, campaign_id: str, now: datetime) -> Optional[datetime]:
        now = ensure_utc(now)
        usage = await self._snapshot(campaign_id, self.config_for(campaign_id), now)
        return usage.next_eligible_at

    async def usage(self, campaign_id: str, now: datetime) -> Dict:
        """Today's counts, caps and remaining capacity for a campaign."""
        now = ensure_utc(now)
        config = self.config_for(campaign_id)
        usage = await self._snapshot(campaign_id, config, now)
        connections = usage.used(CONNECTIONS)
        messages = usage.used(MESSAGES)
        weekly = len(usage.connections)
        in_window, window_reason = config.is_within_working_hours(now)

        return {
            "campaign_id": campaign_id,
            "date": config.local_date(now).isoformat(),
            "timezone": config.timezone,
            "connection_requests": {
                "used": connections,
                "limit": config.daily_connection_requests,
                "remaining": max(0, config.daily_connection_requests - connections),
            },
            "messages": {
                "used": messages,
                "limit": config.daily_messages,
                "remaining": max(0, config.daily_messages - messages),
            },
            "weekly_connections": {
                "used": weekly,
                "limit": config.weekly_connection_cap,
                "remaining": max(0, config.weekly_connection_cap - weekly),
            },
            "within_working_hours": in_window,
            "working_hours_reason": window_reason,
            "last_dispatch_at": usage.last_dispatch_at.isoformat() if usage.last_dispatch_at else None,
            "next_eligible_at": usage.next_eligible_at.isoformat() if usage.next_eligible_at else None,
        }

    async def reset(self, campaign_id: Optional[str] = None) -> None:
        """Drop recorded usage (one campaign or all)."""
        await self.store.reset(campaign_id)
