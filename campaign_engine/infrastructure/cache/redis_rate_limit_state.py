"""
Redis Rate Limit State
Shared rate limiter counters for multi-process deployments.

Keys (per campaign):
- {prefix}:{campaign_id}:slots        sorted set, member -> settlement deadline (ms)
- {prefix}:{campaign_id}:last_call    last dispatch time (ms)
- {prefix}:{campaign_id}:hour:{YYYYMMDDHH}  calls placed in that UTC hour

Check-and-reserve runs as one Lua script so concurrent schedulers cannot
oversubscribe a campaign.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import redis.asyncio as redis

from campaign_engine.domain.interfaces.rate_limit_state import (
    DispatchPermit,
    RateLimitQuota,
    RateLimitSnapshot,
    RateLimitState,
    hour_bucket,
)
from campaign_engine.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)

# Hour buckets outlive their hour so a late cancel can still decrement
HOUR_BUCKET_TTL_SECONDS = 7200

ACQUIRE_SCRIPT = """
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
if redis.call('ZCARD', KEYS[1]) >= tonumber(ARGV[2]) then
    return 'concurrency_limit'
end
local last = redis.call('GET', KEYS[2])
if last and (tonumber(ARGV[1]) - tonumber(last)) < tonumber(ARGV[3]) then
    return 'rate_limit'
end
local per_hour = tonumber(ARGV[4])
if per_hour >= 0 then
    local count = tonumber(redis.call('GET', KEYS[3]) or '0')
    if count >= per_hour then
        return 'hourly_limit'
    end
end
redis.call('ZADD', KEYS[1], ARGV[6], ARGV[5])
redis.call('SET', KEYS[2], ARGV[1])
redis.call('INCR', KEYS[3])
redis.call('EXPIRE', KEYS[3], ARGV[7])
return 'ok'
"""

CANCEL_SCRIPT = """
redis.call('ZREM', KEYS[1], ARGV[1])
local count = tonumber(redis.call('GET', KEYS[2]) or '0')
if count > 0 then
    redis.call('DECR', KEYS[2])
end
return 1
"""

RELEASE_SCRIPT = """
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
return redis.call('ZREM', KEYS[1], ARGV[2])
"""

BIND_SCRIPT = """
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
if redis.call('ZREM', KEYS[1], ARGV[2]) == 0 then
    return 0
end
redis.call('ZADD', KEYS[1], ARGV[4], ARGV[3])
return 1
"""


def _ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(float(value)) / 1000, tz=timezone.utc)


class RedisRateLimitState(RateLimitState):

    KEY_PREFIX = "campaign_engine:ratelimit"

    def __init__(self, redis_client: redis.Redis, clock: Clock = utcnow):
        self._redis = redis_client
        self._clock = clock
        self._acquire = redis_client.register_script(ACQUIRE_SCRIPT)
        self._cancel = redis_client.register_script(CANCEL_SCRIPT)
        self._release = redis_client.register_script(RELEASE_SCRIPT)
        self._bind = redis_client.register_script(BIND_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisRateLimitState":
        client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        logger.info(f"Rate limiter using Redis at {redis_url}")
        return cls(client)

    def _slots_key(self, campaign_id: str) -> str:
        return f"{self.KEY_PREFIX}:{campaign_id}:slots"

    def _last_call_key(self, campaign_id: str) -> str:
        return f"{self.KEY_PREFIX}:{campaign_id}:last_call"

    def _hour_key(self, campaign_id: str, bucket: str) -> str:
        return f"{self.KEY_PREFIX}:{campaign_id}:hour:{bucket}"

    async def snapshot(self, campaign_id: str, now: datetime) -> RateLimitSnapshot:
        slots_key = self._slots_key(campaign_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(slots_key, "-inf", _ms(now))
            pipe.zcard(slots_key)
            pipe.get(self._last_call_key(campaign_id))
            pipe.get(self._hour_key(campaign_id, hour_bucket(now)))
            _, active, last_call, hour_count = await pipe.execute()

        return RateLimitSnapshot(
            active_calls=int(active or 0),
            last_call_time=_from_ms(last_call),
            calls_this_hour=int(hour_count or 0),
        )

    async def acquire(
        self,
        campaign_id: str,
        now: datetime,
        quota: RateLimitQuota
    ) -> Tuple[Optional[DispatchPermit], str]:
        bucket = hour_bucket(now)
        deadline = now + timedelta(seconds=quota.settlement_seconds)
        slot_id = f"slot:{uuid.uuid4()}"

        result = await self._acquire(
            keys=[
                self._slots_key(campaign_id),
                self._last_call_key(campaign_id),
                self._hour_key(campaign_id, bucket),
            ],
            args=[
                _ms(now),
                quota.concurrency,
                quota.min_interval_ms,
                quota.calls_per_hour if quota.calls_per_hour is not None else -1,
                slot_id,
                _ms(deadline),
                HOUR_BUCKET_TTL_SECONDS,
            ],
        )
        if isinstance(result, bytes):
            result = result.decode()

        if result != "ok":
            return None, result

        return DispatchPermit(
            campaign_id=campaign_id,
            slot_id=slot_id,
            acquired_at=now,
            deadline=deadline,
            hour_bucket=bucket,
        ), "acquired"

    async def bind(self, permit: DispatchPermit, provider_call_id: str) -> None:
        rekeyed = await self._bind(
            keys=[self._slots_key(permit.campaign_id)],
            args=[_ms(self._clock()), permit.slot_key, provider_call_id, _ms(permit.deadline)],
        )
        if not int(rekeyed or 0):
            logger.warning(f"Slot {permit.slot_key} expired before call {provider_call_id} was bound")
        permit.provider_call_id = provider_call_id

    async def cancel(self, permit: DispatchPermit) -> None:
        await self._cancel(
            keys=[
                self._slots_key(permit.campaign_id),
                self._hour_key(permit.campaign_id, permit.hour_bucket),
            ],
            args=[permit.slot_key],
        )

    async def release(self, campaign_id: str, provider_call_id: str) -> bool:
        removed = await self._release(
            keys=[self._slots_key(campaign_id)],
            args=[_ms(self._clock()), provider_call_id],
        )
        return int(removed or 0) == 1

    async def close(self) -> None:
        await self._redis.aclose()
