"""
Unit Tests for the Campaign Rate Limiter
Tests scheduling windows, concurrency, spacing, hourly buckets and slot settlement
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from campaign_engine.domain.interfaces.rate_limit_state import hour_bucket
from campaign_engine.domain.models.campaign import Campaign, CampaignSettings, CampaignStatus
from campaign_engine.domain.services.rate_limiter import InMemoryRateLimitState, RateLimiter

# Wednesday
NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)

WEEKDAYS = {
    day: {"enabled": True, "start": "09:00", "end": "17:00"}
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
}


def make_campaign(**settings) -> Campaign:
    return Campaign(
        id="campaign-1",
        organization_id="org-1",
        name="Spring Outreach",
        status=CampaignStatus.RUNNING,
        settings=CampaignSettings(**settings),
    )


@pytest.fixture
def limiter():
    return RateLimiter(InMemoryRateLimitState(), settlement_seconds=60)


class TestHourBucket:
    """Tests for the UTC hour bucket key"""

    def test_bucket_format(self):
        assert hour_bucket(NOW) == "2026030410"

    def test_bucket_changes_on_the_hour(self):
        assert hour_bucket(NOW + timedelta(minutes=59)) == "2026030410"
        assert hour_bucket(NOW + timedelta(minutes=60)) == "2026030411"


class TestScheduleGate:
    """Tests for scheduled start and working hours"""

    def test_no_working_hours_always_open(self, limiter):
        campaign = make_campaign()
        allowed, reason = limiter.check_schedule(campaign, NOW)
        assert allowed is True
        assert reason == "within_schedule"

    def test_within_working_hours(self, limiter):
        campaign = make_campaign(
            working_hours_enabled=True,
            working_hours=WEEKDAYS,
            timezone="Europe/London",
        )
        allowed, _ = limiter.check_schedule(campaign, NOW)
        assert allowed is True

    def test_outside_working_hours(self, limiter):
        campaign = make_campaign(
            working_hours_enabled=True,
            working_hours=WEEKDAYS,
            timezone="Europe/London",
        )
        allowed, reason = limiter.check_schedule(campaign, NOW.replace(hour=18))
        assert allowed is False
        assert reason == "outside_working_hours_09:00_17:00"

    def test_end_of_window_is_inclusive(self, limiter):
        campaign = make_campaign(working_hours_enabled=True, working_hours=WEEKDAYS)
        allowed, _ = limiter.check_schedule(campaign, NOW.replace(hour=17, minute=0, second=30))
        assert allowed is True

    def test_disabled_day(self, limiter):
        campaign = make_campaign(working_hours_enabled=True, working_hours=WEEKDAYS)
        saturday = NOW + timedelta(days=3)
        allowed, reason = limiter.check_schedule(campaign, saturday)
        assert allowed is False
        assert reason == "not_a_working_day_saturday"

    def test_hours_evaluated_in_campaign_timezone(self, limiter):
        """10:00 UTC is 05:00 in New York"""
        campaign = make_campaign(
            working_hours_enabled=True,
            working_hours=WEEKDAYS,
            timezone="America/New_York",
        )
        allowed, reason = limiter.check_schedule(campaign, NOW)
        assert allowed is False
        assert reason.startswith("outside_working_hours")

    def test_unknown_timezone_falls_back_to_utc(self, limiter):
        campaign = make_campaign(
            working_hours_enabled=True,
            working_hours=WEEKDAYS,
            timezone="Mars/Olympus_Mons",
        )
        allowed, _ = limiter.check_schedule(campaign, NOW)
        assert allowed is True

    def test_scheduled_start_pending(self, limiter):
        campaign = make_campaign(when_to_send="scheduled", started_at=NOW + timedelta(hours=1))
        allowed, reason = limiter.check_schedule(campaign, NOW)
        assert allowed is False
        assert reason == "scheduled_start_pending"

    def test_scheduled_start_reached(self, limiter):
        campaign = make_campaign(when_to_send="scheduled", started_at=NOW - timedelta(minutes=1))
        allowed, _ = limiter.check_schedule(campaign, NOW)
        assert allowed is True


class TestAcquire:
    """Tests for atomic check-and-reserve"""

    @pytest.mark.asyncio
    async def test_concurrent_acquires_never_exceed_limit(self, limiter):
        campaign = make_campaign(concurrent_calls=2, calls_per_minute=60)

        permits = await asyncio.gather(*(
            limiter.try_acquire(campaign, NOW + timedelta(seconds=i))
            for i in range(5)
        ))

        granted = [p for p in permits if p is not None]
        assert len(granted) == 2
        assert await limiter.active_calls(campaign.id, NOW + timedelta(seconds=5)) == 2

    @pytest.mark.asyncio
    async def test_same_instant_acquires_are_spaced(self, limiter):
        campaign = make_campaign(concurrent_calls=5, calls_per_minute=5)

        permits = await asyncio.gather(*(limiter.try_acquire(campaign, NOW) for _ in range(5)))

        assert len([p for p in permits if p is not None]) == 1

    @pytest.mark.asyncio
    async def test_minimum_spacing(self, limiter):
        """5 calls per minute means 12s between dispatches"""
        campaign = make_campaign(calls_per_minute=5)

        assert await limiter.try_acquire(campaign, NOW) is not None
        assert await limiter.try_acquire(campaign, NOW + timedelta(seconds=11)) is None
        assert await limiter.try_acquire(campaign, NOW + timedelta(seconds=12)) is not None

    @pytest.mark.asyncio
    async def test_hourly_limit_resets_next_hour(self, limiter):
        campaign = make_campaign(calls_per_minute=60, calls_per_hour=2)

        assert await limiter.try_acquire(campaign, NOW) is not None
        assert await limiter.try_acquire(campaign, NOW + timedelta(seconds=1)) is not None
        assert await limiter.try_acquire(campaign, NOW + timedelta(seconds=2)) is None
        assert await limiter.try_acquire(campaign, NOW + timedelta(hours=1)) is not None

    @pytest.mark.asyncio
    async def test_unsettled_slot_expires_at_deadline(self, limiter):
        campaign = make_campaign(concurrent_calls=1, calls_per_minute=60)

        assert await limiter.try_acquire(campaign, NOW) is not None
        assert await limiter.try_acquire(campaign, NOW + timedelta(seconds=30)) is None
        assert await limiter.try_acquire(campaign, NOW + timedelta(seconds=60)) is not None

    @pytest.mark.asyncio
    async def test_cancel_returns_slot_and_hourly_count(self, limiter):
        campaign = make_campaign(concurrent_calls=1, calls_per_minute=60, calls_per_hour=1)

        permit = await limiter.try_acquire(campaign, NOW)
        await limiter.cancel(permit)

        snapshot = await limiter.state.snapshot(campaign.id, NOW)
        assert snapshot.active_calls == 0
        assert snapshot.calls_this_hour == 0
        assert await limiter.try_acquire(campaign, NOW + timedelta(seconds=1)) is not None


class TestRelease:
    """Tests for webhook-driven slot release"""

    @pytest.mark.asyncio
    async def test_release_is_exactly_once(self, limiter):
        campaign = make_campaign(concurrent_calls=1)

        permit = await limiter.try_acquire(campaign, NOW)
        await limiter.bind(permit, "vapi-call-1")

        assert permit.slot_key == "vapi-call-1"
        assert await limiter.release(campaign.id, "vapi-call-1") is True
        assert await limiter.release(campaign.id, "vapi-call-1") is False
        assert await limiter.active_calls(campaign.id, NOW) == 0

    @pytest.mark.asyncio
    async def test_release_unknown_campaign(self, limiter):
        assert await limiter.release("missing", "vapi-call-1") is False

    @pytest.mark.asyncio
    async def test_release_after_settlement_is_noop(self, limiter):
        campaign = make_campaign(concurrent_calls=1)

        permit = await limiter.try_acquire(campaign, NOW)
        await limiter.bind(permit, "vapi-call-1")
        await limiter.active_calls(campaign.id, NOW + timedelta(seconds=61))

        assert await limiter.release(campaign.id, "vapi-call-1") is False


class TestCanDispatch:
    """Tests for the non-reserving gate"""

    @pytest.mark.asyncio
    async def test_all_rules_passed(self, limiter):
        allowed, reason = await limiter.can_dispatch(make_campaign(), NOW)
        assert allowed is True
        assert reason == "all_rules_passed"

    @pytest.mark.asyncio
    async def test_concurrency_reason(self, limiter):
        campaign = make_campaign(concurrent_calls=1)
        await limiter.try_acquire(campaign, NOW)

        allowed, reason = await limiter.can_dispatch(campaign, NOW + timedelta(seconds=30))
        assert allowed is False
        assert reason == "concurrency_limit_1/1"

    @pytest.mark.asyncio
    async def test_rate_limit_reason(self, limiter):
        campaign = make_campaign(calls_per_minute=5)
        await limiter.try_acquire(campaign, NOW)

        allowed, reason = await limiter.can_dispatch(campaign, NOW + timedelta(seconds=3))
        assert allowed is False
        assert reason == "rate_limit_3000ms_of_12000ms"

    @pytest.mark.asyncio
    async def test_hourly_reason(self, limiter):
        campaign = make_campaign(calls_per_minute=60, calls_per_hour=1)
        await limiter.try_acquire(campaign, NOW)

        allowed, reason = await limiter.can_dispatch(campaign, NOW + timedelta(seconds=5))
        assert allowed is False
        assert reason == "hourly_limit_1/1"

    @pytest.mark.asyncio
    async def test_schedule_checked_first(self, limiter):
        campaign = make_campaign(working_hours_enabled=True, working_hours=WEEKDAYS)
        allowed, reason = await limiter.can_dispatch(campaign, NOW.replace(hour=3))
        assert allowed is False
        assert reason.startswith("outside_working_hours")
