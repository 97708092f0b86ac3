"""
Rate Limit State Interface
Shared per-campaign dispatch counters (active slots, last call time, hourly
buckets). Implementations must make `acquire` atomic per campaign.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


def hour_bucket(now: datetime) -> str:
    """UTC hour key used for calls-per-hour accounting."""
    return now.strftime("%Y%m%d%H")


@dataclass
class DispatchPermit:
    """A reserved concurrency slot, returned by a successful acquire."""
    campaign_id: str
    slot_id: str
    acquired_at: datetime
    deadline: datetime
    hour_bucket: str
    provider_call_id: Optional[str] = None

    @property
    def slot_key(self) -> str:
        """Current key of the slot: the provider call id once bound."""
        return self.provider_call_id or self.slot_id


@dataclass
class RateLimitSnapshot:
    active_calls: int = 0
    last_call_time: Optional[datetime] = None
    calls_this_hour: int = 0


@dataclass
class RateLimitQuota:
    """Limits applied by one acquire"""
    concurrency: int
    min_interval_ms: float
    calls_per_hour: Optional[int]
    settlement_seconds: float


class RateLimitState(ABC):

    @abstractmethod
    async def snapshot(self, campaign_id: str, now: datetime) -> RateLimitSnapshot:
        """Read counters after purging slots past their settlement deadline."""
        pass

    @abstractmethod
    async def acquire(
        self,
        campaign_id: str,
        now: datetime,
        quota: RateLimitQuota
    ) -> Tuple[Optional[DispatchPermit], str]:
        """
        Check concurrency, spacing and hourly limits and reserve a slot in one
        atomic step.

        Returns:
            (permit, reason). permit is None when refused.
        """
        pass

    @abstractmethod
    async def bind(self, permit: DispatchPermit, provider_call_id: str) -> None:
        """Re-key the slot by the provider call id so a webhook can release it."""
        pass

    @abstractmethod
    async def cancel(self, permit: DispatchPermit) -> None:
        """Give back the slot and hourly count of a dispatch that never placed a call."""
        pass

    @abstractmethod
    async def release(self, campaign_id: str, provider_call_id: str) -> bool:
        """Free a bound slot. True only for the first release of a live slot."""
        pass

    async def close(self) -> None:
        pass
