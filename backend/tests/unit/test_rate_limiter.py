"""
Unit tests for the campaign rate limiter
"""
import asyncio
import random
from datetime import datetime, timedelta

import pytest
import pytz

from outreach.domain.models.pipeline import ActionType
from outreach.domain.models.rate_limit_config import RateLimitConfig
from outreach.domain.services.rate_limiter import RateLimiter, counter_for
from outreach.infrastructure.rate_limits import InMemoryRateLimitStore

MONDAY_3PM = datetime(2024, 12, 9, 15, 0, tzinfo=pytz.UTC)


def make_limiter(store: InMemoryRateLimitStore = None, **overrides) -> RateLimiter:
    values = dict(timezone="UTC", min_delay_seconds=0, max_delay_seconds=0)
    values.update(overrides)
    limiter = RateLimiter(store or InMemoryRateLimitStore(), rng=random.Random(0))
    limiter.configure("camp-1", RateLimitConfig(**values))
    return limiter


class TestRateLimitConfig:
    """Tests for the working-hour window"""

    def test_inside_window(self):
        """A Monday afternoon is inside 09:00-18:00"""
        config = RateLimitConfig(timezone="UTC")
        allowed, reason = config.is_within_working_hours(MONDAY_3PM)
        assert allowed is True
        assert reason == "within_working_hours"

    def test_end_is_exclusive(self):
        """18:00 sharp is outside the window"""
        config = RateLimitConfig(timezone="UTC")
        allowed, reason = config.is_within_working_hours(MONDAY_3PM.replace(hour=18))
        assert allowed is False
        assert reason == "outside_working_hours_09:00_18:00"

    def test_weekend_paused(self):
        """Saturday is blocked when weekends are paused"""
        config = RateLimitConfig(timezone="UTC")
        saturday = MONDAY_3PM - timedelta(days=2)
        allowed, reason = config.is_within_working_hours(saturday)
        assert allowed is False
        assert reason == "weekend_paused_Sat"

    def test_weekend_allowed_when_not_paused(self):
        """Saturday is allowed when pause_weekends is off"""
        config = RateLimitConfig(timezone="UTC", pause_weekends=False)
        allowed, _ = config.is_within_working_hours(MONDAY_3PM - timedelta(days=2))
        assert allowed is True

    def test_window_uses_campaign_timezone(self):
        """15:00 UTC is 08:00 in Denver, before the window opens"""
        config = RateLimitConfig(timezone="America/Denver")
        allowed, _ = config.is_within_working_hours(MONDAY_3PM)
        assert allowed is False

    def test_next_window_start_skips_weekend(self):
        """Friday evening rolls over to Monday morning"""
        config = RateLimitConfig(timezone="UTC")
        friday_evening = datetime(2024, 12, 13, 19, 0, tzinfo=pytz.UTC)
        assert config.next_window_start(friday_evening) == datetime(2024, 12, 16, 9, 0, tzinfo=pytz.UTC)

    def test_invalid_timezone_rejected(self):
        """Unknown timezones fail validation"""
        with pytest.raises(ValueError):
            RateLimitConfig(timezone="Mars/Olympus")

    def test_delay_bounds_validated(self):
        """max_delay_seconds below min_delay_seconds is rejected"""
        with pytest.raises(ValueError):
            RateLimitConfig(min_delay_seconds=100, max_delay_seconds=10)


class TestRateLimiterCaps:
    """Tests for daily and weekly caps"""

    def test_counter_mapping(self):
        """Actions map to the right daily counter"""
        assert counter_for(ActionType.CONNECTION_REQUEST) == "connection_request"
        assert counter_for(ActionType.FOLLOW_UP) == "message"
        assert counter_for(ActionType.INMAIL) == "message"
        assert counter_for(ActionType.PROFILE_VIEW) is None

    @pytest.mark.asyncio
    async def test_daily_connection_cap(self):
        """The cap'th connection request is the last one allowed today"""
        limiter = make_limiter(daily_connection_requests=2)
        for minute in range(2):
            decision, reservation = await limiter.try_acquire(
                "camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM + timedelta(minutes=minute)
            )
            assert decision.allowed
            assert reservation is not None

        decision, reservation = await limiter.try_acquire(
            "camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM + timedelta(minutes=5)
        )
        assert not decision
        assert reservation is None
        assert decision.reason == "daily_connection_request_cap_reached_2/2"
        assert decision.retry_at == datetime(2024, 12, 10, 0, 0, tzinfo=pytz.UTC)

    @pytest.mark.asyncio
    async def test_daily_cap_resets_at_local_midnight(self):
        """A new local day starts with fresh counters"""
        limiter = make_limiter(daily_messages=1)
        await limiter.record_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM)
        assert not await limiter.can_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM + timedelta(minutes=1))
        assert await limiter.can_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM + timedelta(days=1))

    @pytest.mark.asyncio
    async def test_message_cap_does_not_block_connections(self):
        """Each counter is capped independently"""
        limiter = make_limiter(daily_messages=0)
        assert not await limiter.can_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM)
        assert await limiter.can_dispatch("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM)

    @pytest.mark.asyncio
    async def test_uncapped_actions(self):
        """Profile views are only subject to window and spacing"""
        limiter = make_limiter(daily_connection_requests=0, daily_messages=0)
        assert await limiter.can_dispatch("camp-1", ActionType.PROFILE_VIEW, MONDAY_3PM)

    @pytest.mark.asyncio
    async def test_weekly_cap_is_rolling(self):
        """Connections older than 168 hours no longer count"""
        limiter = make_limiter(weekly_connection_cap=2, pause_weekends=False)
        first = MONDAY_3PM
        await limiter.record_dispatch("camp-1", ActionType.CONNECTION_REQUEST, first)
        await limiter.record_dispatch("camp-1", ActionType.CONNECTION_REQUEST, first + timedelta(days=1))

        decision = await limiter.can_dispatch("camp-1", ActionType.CONNECTION_REQUEST, first + timedelta(days=3))
        assert not decision
        assert decision.reason == "weekly_connection_cap_reached_2/2"
        assert decision.retry_at == first + timedelta(hours=168)

        assert await limiter.can_dispatch("camp-1", ActionType.CONNECTION_REQUEST, first + timedelta(hours=168))

    @pytest.mark.asyncio
    async def test_window_checked_before_caps(self):
        """Outside the window the denial names the window, not the cap"""
        limiter = make_limiter(daily_messages=0)
        decision = await limiter.can_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM.replace(hour=20))
        assert decision.reason.startswith("outside_working_hours")

    @pytest.mark.asyncio
    async def test_campaigns_are_isolated(self):
        """Usage in one campaign does not affect another"""
        limiter = make_limiter(daily_messages=1)
        limiter.configure("camp-2", RateLimitConfig(timezone="UTC", daily_messages=1, min_delay_seconds=0, max_delay_seconds=0))
        await limiter.record_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM)
        assert await limiter.can_dispatch("camp-2", ActionType.MESSAGE, MONDAY_3PM)


class TestRateLimiterSpacing:
    """Tests for minimum delay and jitter"""

    @pytest.mark.asyncio
    async def test_min_delay_enforced(self):
        """A dispatch too soon after the previous one is denied"""
        limiter = make_limiter(min_delay_seconds=60, max_delay_seconds=60)
        await limiter.record_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM)

        decision = await limiter.can_dispatch("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM + timedelta(seconds=30))
        assert not decision
        assert decision.reason == "min_delay_30s_of_60s"
        assert decision.retry_at == MONDAY_3PM + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_jitter_within_bounds(self):
        """next_eligible_at lands between min and max delay"""
        limiter = make_limiter(min_delay_seconds=45, max_delay_seconds=180)
        await limiter.record_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM)
        next_at = await limiter.next_eligible_at("camp-1", MONDAY_3PM)
        assert MONDAY_3PM + timedelta(seconds=45) <= next_at <= MONDAY_3PM + timedelta(seconds=180)

    @pytest.mark.asyncio
    async def test_jitter_blocks_until_eligible(self):
        """Between min delay and the jittered time the denial is a jitter delay"""
        limiter = make_limiter(min_delay_seconds=10, max_delay_seconds=1000)
        await limiter.record_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM)
        next_at = await limiter.next_eligible_at("camp-1", MONDAY_3PM)

        checked_at = MONDAY_3PM + timedelta(seconds=10)
        if checked_at < next_at:
            decision = await limiter.can_dispatch("camp-1", ActionType.MESSAGE, checked_at)
            assert decision.reason.startswith("jitter_delay_")
        assert await limiter.can_dispatch("camp-1", ActionType.MESSAGE, next_at)


class TestRateLimiterRelease:
    """Tests for releasing a failed dispatch"""

    @pytest.mark.asyncio
    async def test_release_restores_capacity(self):
        """Released usage frees the daily and weekly slot"""
        limiter = make_limiter(daily_connection_requests=1, weekly_connection_cap=1)
        _, reservation = await limiter.try_acquire("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM)
        assert not await limiter.can_dispatch("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM)

        await limiter.release("camp-1", reservation.token)

        usage = await limiter.usage("camp-1", MONDAY_3PM)
        assert usage["connection_requests"]["used"] == 0
        assert usage["weekly_connections"]["used"] == 0
        assert await limiter.can_dispatch("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM)

    @pytest.mark.asyncio
    async def test_release_rolls_back_spacing(self):
        """Spacing returns to its state before the failed dispatch"""
        limiter = make_limiter(min_delay_seconds=60, max_delay_seconds=60)
        _, reservation = await limiter.try_acquire("camp-1", ActionType.MESSAGE, MONDAY_3PM)
        await limiter.release("camp-1", reservation.token)
        assert await limiter.next_eligible_at("camp-1", MONDAY_3PM) is None


class TestRateLimiterUsage:
    """Tests for usage reporting"""

    @pytest.mark.asyncio
    async def test_usage_report(self):
        """Usage shows used, limit and remaining per counter"""
        limiter = make_limiter(daily_messages=5)
        await limiter.record_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM)
        await limiter.record_dispatch("camp-1", ActionType.FOLLOW_UP, MONDAY_3PM + timedelta(minutes=1))

        usage = await limiter.usage("camp-1", MONDAY_3PM + timedelta(minutes=2))
        assert usage["date"] == "2024-12-09"
        assert usage["messages"] == {"used": 2, "limit": 5, "remaining": 3}
        assert usage["connection_requests"]["used"] == 0
        assert usage["within_working_hours"] is True

    @pytest.mark.asyncio
    async def test_reset(self):
        """reset() clears recorded usage"""
        limiter = make_limiter()
        await limiter.record_dispatch("camp-1", ActionType.MESSAGE, MONDAY_3PM)
        await limiter.reset("camp-1")
        usage = await limiter.usage("camp-1", MONDAY_3PM)
        assert usage["messages"]["used"] == 0


class TestSharedUsageStore:
    """Tests for limiters in different processes sharing one usage store"""

    @pytest.mark.asyncio
    async def test_second_limiter_sees_first_limiters_usage(self):
        """A cap spent through one limiter is spent for every limiter on the store"""
        store = InMemoryRateLimitStore()
        api = make_limiter(store, daily_connection_requests=1)
        worker = make_limiter(store, daily_connection_requests=1)

        decision, _ = await api.try_acquire("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM)
        assert decision.allowed

        decision, reservation = await worker.try_acquire(
            "camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM + timedelta(minutes=1)
        )
        assert reservation is None
        assert decision.reason == "daily_connection_request_cap_reached_1/1"

    @pytest.mark.asyncio
    async def test_restarted_limiter_keeps_weekly_usage(self):
        """A fresh limiter over the same store still counts the rolling week"""
        store = InMemoryRateLimitStore()
        before = make_limiter(store, weekly_connection_cap=1, pause_weekends=False)
        await before.record_dispatch("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM)

        after = make_limiter(store, weekly_connection_cap=1, pause_weekends=False)
        decision = await after.can_dispatch("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM + timedelta(days=2))
        assert decision.reason == "weekly_connection_cap_reached_1/1"

    @pytest.mark.asyncio
    async def test_concurrent_acquire_across_limiters(self):
        """Racing limiters never hand out more slots than the cap"""
        store = InMemoryRateLimitStore()
        limiters = [make_limiter(store, daily_messages=2) for _ in range(4)]

        results = await asyncio.gather(*(
            limiter.try_acquire("camp-1", ActionType.MESSAGE, MONDAY_3PM) for limiter in limiters
        ))

        granted = [reservation for _, reservation in results if reservation is not None]
        assert len(granted) == 2
        usage = await limiters[0].usage("camp-1", MONDAY_3PM)
        assert usage["messages"]["used"] == 2

    @pytest.mark.asyncio
    async def test_release_through_another_limiter(self):
        """A reservation can be given back by a different limiter on the store"""
        store = InMemoryRateLimitStore()
        first = make_limiter(store, daily_connection_requests=1)
        second = make_limiter(store, daily_connection_requests=1)

        _, reservation = await first.try_acquire("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM)
        assert await second.release("camp-1", reservation.token) is True
        assert await second.release("camp-1", reservation.token) is False
        assert await first.can_dispatch("camp-1", ActionType.CONNECTION_REQUEST, MONDAY_3PM)
