"""
Redis Rate Limit Store
Usage counters shared by every API and worker process through Redis
"""
import logging
from datetime import date, datetime
from typing import Dict, Optional

import redis.asyncio as redis

from outreach.domain.interfaces.rate_limit_store import RateLimitStore
from outreach.domain.models.rate_limit_usage import (
    CONNECTIONS,
    WEEK,
    Reservation,
    UsageSnapshot,
    from_timestamp,
    to_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "outreach:ratelimit"

# Daily hashes only need to cover one local day in any time zone
DAILY_TTL_SECONDS = 3 * 24 * 3600
WEEK_TTL_SECONDS = int(WEEK.total_seconds()) + 24 * 3600


class RedisRateLimitStore(RateLimitStore):
    """
    Key layout per campaign (under `prefix:{campaign_id}`):

        :daily:{YYYY-MM-DD}   hash counter -> used, expires after 3 days
        :connections          zset token -> dispatch timestamp (rolling 168h)
        :spacing              hash last_dispatch_at / next_eligible_at / last_token
        :reservation:{token}  hash of the Reservation, expires after a week
        :lock                 redis lock held around check-and-record
    """

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = DEFAULT_PREFIX,
        lock_timeout: float = 10.0
    ):
        self._redis = client
        self.prefix = prefix
        self.lock_timeout = lock_timeout

    @classmethod
    async def from_url(cls, redis_url: str, prefix: str = DEFAULT_PREFIX) -> "RedisRateLimitStore":
        client = await redis.from_url(redis_url, decode_responses=True)
        return cls(client, prefix)

    def _key(self, campaign_id: str, *parts: str) -> str:
        return ":".join((self.prefix, campaign_id) + parts)

    def lock(self, campaign_id: str):
        return self._redis.lock(
            self._key(campaign_id, "lock"),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )

    async def snapshot(self, campaign_id: str, day: date, now: datetime) -> UsageSnapshot:
        connections_key = self._key(campaign_id, "connections")
        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(connections_key, "-inf", (now - WEEK).timestamp())
        pipe.zrange(connections_key, 0, -1, withscores=True)
        pipe.hgetall(self._key(campaign_id, "daily", day.isoformat()))
        pipe.hgetall(self._key(campaign_id, "spacing"))
        _, connections, daily, spacing = await pipe.execute()

        spacing = spacing or {}
        return UsageSnapshot(
            daily={counter: int(used) for counter, used in (daily or {}).items()},
            connections=[from_timestamp(score) for _, score in connections or []],
            last_dispatch_at=from_timestamp(spacing.get("last_dispatch_at")),
            next_eligible_at=from_timestamp(spacing.get("next_eligible_at")),
        )

    async def record(self, reservation: Reservation, next_eligible_at: datetime) -> None:
        campaign_id = reservation.campaign_id
        reservation_key = self._key(campaign_id, "reservation", reservation.token)

        pipe = self._redis.pipeline(transaction=True)
        if reservation.counter is not None:
            daily_key = self._key(campaign_id, "daily", reservation.day.isoformat())
            pipe.hincrby(daily_key, reservation.counter, 1)
            pipe.expire(daily_key, DAILY_TTL_SECONDS)
        if reservation.counter == CONNECTIONS:
            connections_key = self._key(campaign_id, "connections")
            pipe.zadd(connections_key, {reservation.token: reservation.at.timestamp()})
            pipe.expire(connections_key, WEEK_TTL_SECONDS)
        pipe.hset(self._key(campaign_id, "spacing"), mapping={
            "last_dispatch_at": to_timestamp(reservation.at),
            "next_eligible_at": to_timestamp(next_eligible_at),
            "last_token": reservation.token,
        })
        pipe.hset(reservation_key, mapping=reservation.to_mapping())
        pipe.expire(reservation_key, WEEK_TTL_SECONDS)
        await pipe.execute()

    async def release(self, campaign_id: str, token: str) -> bool:
        reservation_key = self._key(campaign_id, "reservation", token)
        data = await self._redis.hgetall(reservation_key)
        if not data:
            logger.warning(f"Reservation {token} for campaign {campaign_id} not found; nothing released")
            return False
        reservation = Reservation.from_mapping(token, data)
        spacing_key = self._key(campaign_id, "spacing")
        spacing: Dict[str, str] = await self._redis.hgetall(spacing_key) or {}

        pipe = self._redis.pipeline(transaction=True)
        if reservation.counter is not None:
            daily_key = self._key(campaign_id, "daily", reservation.day.isoformat())
            used = await self._redis.hget(daily_key, reservation.counter)
            if int(used or 0) > 0:
                pipe.hincrby(daily_key, reservation.counter, -1)
        if reservation.counter == CONNECTIONS:
            pipe.zrem(self._key(campaign_id, "connections"), token)
        # Only roll back spacing if nothing was dispatched since
        if spacing.get("last_token") == token:
            pipe.hset(spacing_key, mapping={
                "last_dispatch_at": to_timestamp(reservation.previous_last_dispatch_at),
                "next_eligible_at": to_timestamp(reservation.previous_next_eligible_at),
                "last_token": "",
            })
        pipe.delete(reservation_key)
        await pipe.execute()
        return True

    async def reset(self, campaign_id: Optional[str] = None) -> None:
        pattern = f"{self.prefix}:{campaign_id}:*" if campaign_id else f"{self.prefix}:*"
        keys = [key async for key in self._redis.scan_iter(match=pattern)]
        if keys:
            await self._redis.delete(*keys)
        logger.info(f"Reset rate-limit usage ({campaign_id or 'all campaigns'}): {len(keys)} keys")

    async def close(self) -> None:
        await self._redis.aclose()
