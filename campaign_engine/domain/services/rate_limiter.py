"""
Campaign Rate Limiter
Per-campaign dispatch gate: scheduled start, working hours, concurrency,
calls-per-minute spacing and calls-per-hour buckets.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Dict, Optional, Tuple

import pytz

from campaign_engine.domain.interfaces.rate_limit_state import (
    DispatchPermit,
    RateLimitQuota,
    RateLimitSnapshot,
    RateLimitState,
    hour_bucket,
)
from campaign_engine.domain.models.campaign import Campaign, WhenToSend
from campaign_engine.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)

DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def _parse_hhmm(value: str) -> time:
    hour, minute = map(int, value.split(":"))
    return time(hour, minute)


@dataclass
class _CampaignCounters:
    slots: Dict[str, datetime] = field(default_factory=dict)
    last_call_time: Optional[datetime] = None
    hour_counts: Dict[str, int] = field(default_factory=dict)

    def purge(self, now: datetime) -> None:
        expired = [key for key, deadline in self.slots.items() if deadline <= now]
        for key in expired:
            del self.slots[key]
        if expired:
            logger.info(f"Settled {len(expired)} slot(s) past their deadline")


class InMemoryRateLimitState(RateLimitState):
    """
    Single-process counter state.

    Each campaign has its own asyncio.Lock, so ticks for different
    campaigns never contend and acquires for one campaign serialize.
    """

    def __init__(self):
        self._counters: Dict[str, _CampaignCounters] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, campaign_id: str) -> asyncio.Lock:
        lock = self._locks.get(campaign_id)
        if lock is None:
            lock = self._locks[campaign_id] = asyncio.Lock()
        return lock

    def _get(self, campaign_id: str) -> _CampaignCounters:
        counters = self._counters.get(campaign_id)
        if counters is None:
            counters = self._counters[campaign_id] = _CampaignCounters()
        return counters

    async def snapshot(self, campaign_id: str, now: datetime) -> RateLimitSnapshot:
        async with self._lock(campaign_id):
            counters = self._get(campaign_id)
            counters.purge(now)
            return RateLimitSnapshot(
                active_calls=len(counters.slots),
                last_call_time=counters.last_call_time,
                calls_this_hour=counters.hour_counts.get(hour_bucket(now), 0),
            )

    async def acquire(
        self,
        campaign_id: str,
        now: datetime,
        quota: RateLimitQuota
    ) -> Tuple[Optional[DispatchPermit], str]:
        async with self._lock(campaign_id):
            counters = self._get(campaign_id)
            counters.purge(now)

            if len(counters.slots) >= quota.concurrency:
                return None, "concurrency_limit"

            if counters.last_call_time is not None:
                elapsed_ms = (now - counters.last_call_time).total_seconds() * 1000
                if elapsed_ms < quota.min_interval_ms:
                    return None, "rate_limit"

            bucket = hour_bucket(now)
            if quota.calls_per_hour is not None:
                if counters.hour_counts.get(bucket, 0) >= quota.calls_per_hour:
                    return None, "hourly_limit"

            permit = DispatchPermit(
                campaign_id=campaign_id,
                slot_id=f"slot:{uuid.uuid4()}",
                acquired_at=now,
                deadline=now + timedelta(seconds=quota.settlement_seconds),
                hour_bucket=bucket,
            )
            counters.slots[permit.slot_id] = permit.deadline
            counters.last_call_time = now
            counters.hour_counts[bucket] = counters.hour_counts.get(bucket, 0) + 1
            # Older buckets can no longer be read
            for stale in [key for key in counters.hour_counts if key < bucket]:
                del counters.hour_counts[stale]
            return permit, "acquired"

    async def bind(self, permit: DispatchPermit, provider_call_id: str) -> None:
        async with self._lock(permit.campaign_id):
            counters = self._get(permit.campaign_id)
            deadline = counters.slots.pop(permit.slot_key, None)
            permit.provider_call_id = provider_call_id
            if deadline is not None:
                counters.slots[provider_call_id] = deadline

    async def cancel(self, permit: DispatchPermit) -> None:
        async with self._lock(permit.campaign_id):
            counters = self._get(permit.campaign_id)
            counters.slots.pop(permit.slot_key, None)
            count = counters.hour_counts.get(permit.hour_bucket, 0)
            if count > 0:
                counters.hour_counts[permit.hour_bucket] = count - 1

    async def release(self, campaign_id: str, provider_call_id: str) -> bool:
        async with self._lock(campaign_id):
            counters = self._counters.get(campaign_id)
            if counters is None:
                return False
            return counters.slots.pop(provider_call_id, None) is not None


class RateLimiter:
    """
    Decides whether a campaign may place another call right now.

    Checks, in order:
    1. Scheduled start (when_to_send == scheduled and now < started_at)
    2. Working hours in the campaign timezone
    3. Active calls < concurrency limit
    4. Spacing of 60000 / calls_per_minute ms since the last call
    5. Calls this hour < calls_per_hour (when set)
    """

    def __init__(
        self,
        state: Optional[RateLimitState] = None,
        settlement_seconds: float = 60
    ):
        self.state = state or InMemoryRateLimitState()
        self.settlement_seconds = settlement_seconds

    def check_schedule(self, campaign: Campaign, now: datetime) -> Tuple[bool, str]:
        """Scheduled-start and working-hours gate."""
        settings = campaign.settings

        if settings.when_to_send == WhenToSend.SCHEDULED and settings.started_at:
            if ensure_utc(now) < ensure_utc(settings.started_at):
                return False, "scheduled_start_pending"

        if not settings.working_hours_enabled:
            return True, "within_schedule"

        try:
            tz = pytz.timezone(settings.timezone)
        except pytz.exceptions.UnknownTimeZoneError:
            logger.warning(
                f"Unknown timezone {settings.timezone!r} on campaign {campaign.id}, using UTC"
            )
            tz = pytz.UTC

        local_now = ensure_utc(now).astimezone(tz)
        day = DAY_NAMES[local_now.weekday()]
        today = settings.working_hours.get(day)
        if today is None or not today.enabled:
            return False, f"not_a_working_day_{day}"

        try:
            start, end = _parse_hhmm(today.start), _parse_hhmm(today.end)
        except ValueError:
            logger.warning(f"Invalid working hours on campaign {campaign.id}: {today}")
            return False, "invalid_working_hours"

        current = local_now.time().replace(second=0, microsecond=0)
        if start <= current <= end:
            return True, "within_working_hours"
        return False, f"outside_working_hours_{today.start}_{today.end}"

    def quota_for(self, campaign: Campaign) -> RateLimitQuota:
        settings = campaign.settings
        return RateLimitQuota(
            concurrency=settings.concurrent_calls,
            min_interval_ms=settings.min_call_interval_ms,
            calls_per_hour=settings.calls_per_hour,
            settlement_seconds=self.settlement_seconds,
        )

    async def can_dispatch(self, campaign: Campaign, now: datetime) -> Tuple[bool, str]:
        """
        Non-reserving check of every gate.

        Returns:
            (allowed, reason)
        """
        allowed, reason = self.check_schedule(campaign, now)
        if not allowed:
            return False, reason

        settings = campaign.settings
        snapshot = await self.state.snapshot(campaign.id, now)

        if snapshot.active_calls >= settings.concurrent_calls:
            return False, f"concurrency_limit_{snapshot.active_calls}/{settings.concurrent_calls}"

        if snapshot.last_call_time is not None:
            elapsed_ms = (now - snapshot.last_call_time).total_seconds() * 1000
            if elapsed_ms < settings.min_call_interval_ms:
                return False, f"rate_limit_{int(elapsed_ms)}ms_of_{int(settings.min_call_interval_ms)}ms"

        if settings.calls_per_hour is not None and snapshot.calls_this_hour >= settings.calls_per_hour:
            return False, f"hourly_limit_{snapshot.calls_this_hour}/{settings.calls_per_hour}"

        return True, "all_rules_passed"

    async def try_acquire(self, campaign: Campaign, now: datetime) -> Optional[DispatchPermit]:
        """Atomically check limits and reserve a slot. None when refused."""
        permit, reason = await self.state.acquire(campaign.id, now, self.quota_for(campaign))
        if permit is None:
            logger.debug(f"Campaign {campaign.id} refused dispatch slot: {reason}")
        return permit

    async def bind(self, permit: DispatchPermit, provider_call_id: str) -> None:
        await self.state.bind(permit, provider_call_id)

    async def cancel(self, permit: DispatchPermit) -> None:
        await self.state.cancel(permit)
        logger.debug(f"Cancelled dispatch slot for campaign {permit.campaign_id}")

    async def release(self, campaign_id: str, provider_call_id: str) -> bool:
        released = await self.state.release(campaign_id, provider_call_id)
        if released:
            logger.debug(f"Released slot for call {provider_call_id} (campaign {campaign_id})")
        return released

    async def active_calls(self, campaign_id: str, now: datetime) -> int:
        snapshot = await self.state.snapshot(campaign_id, now)
        return snapshot.active_calls
