"""
Unit Tests for the Redis rate limit state
The Redis client is mocked; Lua scripts are checked for the keys and
arguments they receive.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from campaign_engine.domain.interfaces.rate_limit_state import DispatchPermit, RateLimitQuota
from campaign_engine.infrastructure.cache.redis_rate_limit_state import (
    HOUR_BUCKET_TTL_SECONDS,
    RedisRateLimitState,
)

NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)

QUOTA = RateLimitQuota(concurrency=2, min_interval_ms=12000, calls_per_hour=None, settlement_seconds=60)


@pytest.fixture
def scripts():
    return {
        "acquire": AsyncMock(),
        "cancel": AsyncMock(),
        "release": AsyncMock(),
        "bind": AsyncMock(),
    }


@pytest.fixture
def pipe():
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.__aexit__.return_value = False
    pipe.execute = AsyncMock()
    return pipe


@pytest.fixture
def redis_client(scripts, pipe):
    client = MagicMock()
    client.register_script.side_effect = [
        scripts["acquire"], scripts["cancel"], scripts["release"], scripts["bind"]
    ]
    client.pipeline.return_value = pipe
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def state(redis_client):
    return RedisRateLimitState(redis_client, clock=lambda: NOW)


class TestRedisAcquire:
    """Tests for the atomic acquire script"""

    @pytest.mark.asyncio
    async def test_acquire_ok(self, state, scripts):
        scripts["acquire"].return_value = "ok"

        permit, reason = await state.acquire("campaign-1", NOW, QUOTA)

        assert reason == "acquired"
        assert permit.campaign_id == "campaign-1"
        assert permit.hour_bucket == "2026030410"
        assert permit.deadline == NOW + timedelta(seconds=60)
        assert permit.slot_id.startswith("slot:")

        kwargs = scripts["acquire"].call_args.kwargs
        assert kwargs["keys"] == [
            "campaign_engine:ratelimit:campaign-1:slots",
            "campaign_engine:ratelimit:campaign-1:last_call",
            "campaign_engine:ratelimit:campaign-1:hour:2026030410",
        ]
        assert kwargs["args"] == [
            NOW_MS,
            2,
            12000,
            -1,
            permit.slot_id,
            NOW_MS + 60000,
            HOUR_BUCKET_TTL_SECONDS,
        ]

    @pytest.mark.asyncio
    async def test_acquire_refused(self, state, scripts):
        scripts["acquire"].return_value = b"concurrency_limit"

        permit, reason = await state.acquire("campaign-1", NOW, QUOTA)

        assert permit is None
        assert reason == "concurrency_limit"

    @pytest.mark.asyncio
    async def test_hourly_limit_passed_through(self, state, scripts):
        scripts["acquire"].return_value = "hourly_limit"
        quota = RateLimitQuota(concurrency=2, min_interval_ms=0, calls_per_hour=50, settlement_seconds=60)

        await state.acquire("campaign-1", NOW, quota)

        assert scripts["acquire"].call_args.kwargs["args"][3] == 50


class TestRedisSlots:
    """Tests for bind, cancel and release"""

    def _permit(self, provider_call_id=None):
        return DispatchPermit(
            campaign_id="campaign-1",
            slot_id="slot:abc",
            acquired_at=NOW,
            deadline=NOW + timedelta(seconds=60),
            hour_bucket="2026030410",
            provider_call_id=provider_call_id,
        )

    @pytest.mark.asyncio
    async def test_bind_rekeys_slot(self, state, scripts):
        scripts["bind"].return_value = 1
        permit = self._permit()

        await state.bind(permit, "vapi-call-1")

        kwargs = scripts["bind"].call_args.kwargs
        assert kwargs["keys"] == ["campaign_engine:ratelimit:campaign-1:slots"]
        assert kwargs["args"] == [NOW_MS, "slot:abc", "vapi-call-1", NOW_MS + 60000]
        assert permit.slot_key == "vapi-call-1"

    @pytest.mark.asyncio
    async def test_bind_expired_slot_not_restored(self, state, scripts, pipe):
        scripts["bind"].return_value = 0
        permit = self._permit()

        await state.bind(permit, "vapi-call-1")

        scripts["bind"].assert_awaited_once()
        pipe.zadd.assert_not_called()
        assert permit.provider_call_id == "vapi-call-1"

    @pytest.mark.asyncio
    async def test_cancel(self, state, scripts):
        await state.cancel(self._permit())

        kwargs = scripts["cancel"].call_args.kwargs
        assert kwargs["keys"] == [
            "campaign_engine:ratelimit:campaign-1:slots",
            "campaign_engine:ratelimit:campaign-1:hour:2026030410",
        ]
        assert kwargs["args"] == ["slot:abc"]

    @pytest.mark.asyncio
    async def test_release_first_time(self, state, scripts):
        scripts["release"].return_value = 1

        assert await state.release("campaign-1", "vapi-call-1") is True
        assert scripts["release"].call_args.kwargs["args"] == [NOW_MS, "vapi-call-1"]

    @pytest.mark.asyncio
    async def test_release_again(self, state, scripts):
        scripts["release"].return_value = 0
        assert await state.release("campaign-1", "vapi-call-1") is False


class TestRedisSnapshot:
    """Tests for the snapshot pipeline"""

    @pytest.mark.asyncio
    async def test_snapshot(self, state, pipe):
        pipe.execute.return_value = [1, 2, str(NOW_MS - 5000), "7"]

        snapshot = await state.snapshot("campaign-1", NOW)

        assert snapshot.active_calls == 2
        assert snapshot.last_call_time == NOW - timedelta(seconds=5)
        assert snapshot.calls_this_hour == 7
        pipe.zremrangebyscore.assert_called_once_with(
            "campaign_engine:ratelimit:campaign-1:slots", "-inf", NOW_MS
        )

    @pytest.mark.asyncio
    async def test_empty_snapshot(self, state, pipe):
        pipe.execute.return_value = [0, 0, None, None]

        snapshot = await state.snapshot("campaign-1", NOW)

        assert snapshot.active_calls == 0
        assert snapshot.last_call_time is None
        assert snapshot.calls_this_hour == 0

    @pytest.mark.asyncio
    async def test_close(self, state, redis_client):
        await state.close()
        redis_client.aclose.assert_awaited_once()
