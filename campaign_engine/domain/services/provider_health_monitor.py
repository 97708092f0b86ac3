"""
Provider Health Monitor
Checks the voice provider health and trips the campaign circuit breaker.

States:
- healthy: check succeeded in under 5s
- degraded: check succeeded slowly, or failed fewer than 3 times in a row
- down: 3+ consecutive check failures

Transitions:
- down -> healthy: resume campaigns paused for provider_outage
- anything else -> down: pause running campaigns
"""
import asyncio
import logging
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from campaign_engine.domain.interfaces.campaign_store import CampaignStore
from campaign_engine.domain.interfaces.voice_provider import VoiceProviderClient
from campaign_engine.domain.models.campaign import Campaign
from campaign_engine.domain.models.provider_health import (
    HealthCheckResult,
    HealthStatus,
    Notification,
    ProviderHealthRecord,
)
from campaign_engine.utils.time_utils import Clock, to_iso, utcnow

logger = logging.getLogger(__name__)

RECOVERED_NOTIFICATION = "provider_recovered"
OUTAGE_NOTIFICATION = "provider_outage"


class ProviderHealthMonitor:

    def __init__(
        self,
        store: CampaignStore,
        voice_client: VoiceProviderClient,
        timeout_seconds: float = 10.0,
        degraded_threshold_ms: int = 5000,
        down_after_failures: int = 3,
        clock: Clock = utcnow,
        timer: Callable[[], float] = time.monotonic
    ):
        self.store = store
        self.voice_client = voice_client
        self.timeout_seconds = timeout_seconds
        self.degraded_threshold_ms = degraded_threshold_ms
        self.down_after_failures = down_after_failures
        self._clock = clock
        self._timer = timer

    @property
    def provider(self) -> str:
        return self.voice_client.name

    async def check_once(self) -> HealthCheckResult:
        """Single health check, classified before hysteresis."""
        start = self._timer()
        try:
            await asyncio.wait_for(self.voice_client.ping(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            elapsed = int((self._timer() - start) * 1000)
            return HealthCheckResult(
                status=HealthStatus.DOWN,
                response_time_ms=elapsed,
                error_message=f"Request timeout ({self.timeout_seconds:g}s)",
            )
        except Exception as e:
            elapsed = int((self._timer() - start) * 1000)
            return HealthCheckResult(
                status=HealthStatus.DOWN,
                response_time_ms=elapsed,
                error_message=str(e) or type(e).__name__,
            )

        elapsed = int((self._timer() - start) * 1000)
        if elapsed >= self.degraded_threshold_ms:
            return HealthCheckResult(
                status=HealthStatus.DEGRADED,
                response_time_ms=elapsed,
                error_message=f"Slow response: {elapsed}ms",
            )
        return HealthCheckResult(status=HealthStatus.HEALTHY, response_time_ms=elapsed)

    async def check(self) -> ProviderHealthRecord:
        """
        Run one health check, record it and apply outage transitions.

        Never raises: store failures are logged and the computed record is
        still returned.
        """
        logger.info(f"Starting health check for {self.provider}")
        result = await self.check_once()

        previous: Optional[ProviderHealthRecord] = None
        try:
            previous = await self.store.latest_health(self.provider)
        except Exception as e:
            logger.error(f"Failed to load previous health for {self.provider}: {e}", exc_info=True)

        previous_status = previous.status if previous else HealthStatus.HEALTHY
        previous_failures = previous.consecutive_failures if previous else 0

        consecutive_failures = previous_failures + 1 if result.status == HealthStatus.DOWN else 0

        status = result.status
        if status == HealthStatus.DOWN and consecutive_failures < self.down_after_failures:
            status = HealthStatus.DEGRADED

        record = ProviderHealthRecord(
            provider=self.provider,
            status=status,
            response_time_ms=result.response_time_ms,
            error_message=result.error_message,
            consecutive_failures=consecutive_failures,
            checked_at=self._clock(),
        )
        logger.info(f"Health result for {self.provider}: {status.value} ({result.response_time_ms}ms)")

        try:
            await self.store.insert_health_record(record)
        except Exception as e:
            logger.error(f"Failed to store health record: {e}", exc_info=True)

        try:
            if previous_status == HealthStatus.DOWN and status == HealthStatus.HEALTHY:
                await self._handle_recovery()
            elif previous_status != HealthStatus.DOWN and status == HealthStatus.DOWN:
                await self._handle_outage()
        except Exception as e:
            logger.error(f"Failed to apply health transition for {self.provider}: {e}", exc_info=True)

        return record

    async def current_status(self) -> Dict[str, Any]:
        latest = await self.store.latest_health(self.provider)
        return {
            "provider": self.provider,
            "status": latest.status.value if latest else "unknown",
            "response_time_ms": latest.response_time_ms if latest else None,
            "last_checked": to_iso(latest.checked_at) if latest else None,
            "consecutive_failures": latest.consecutive_failures if latest else 0,
        }

    async def _handle_recovery(self) -> None:
        logger.info(f"Provider {self.provider} recovered, resuming paused campaigns")
        resumed = await self.store.resume_outage_campaigns(self._clock())
        for campaign in resumed:
            logger.info(f"Resumed campaign {campaign.name or campaign.id}")

        await self._notify(
            resumed,
            RECOVERED_NOTIFICATION,
            "Voice Provider Recovered",
            "Voice provider is back online. {count} campaign(s) have been automatically resumed.",
        )

    async def _handle_outage(self) -> None:
        logger.warning(f"Provider {self.provider} is DOWN, pausing running campaigns")
        paused = await self.store.pause_campaigns_for_outage(self._clock())

        await self._notify(
            paused,
            OUTAGE_NOTIFICATION,
            "Voice Provider Outage",
            "Voice provider is experiencing an outage. {count} campaign(s) have been paused "
            "and will resume automatically when service is restored.",
        )

    async def _notify(self, campaigns: List[Campaign], kind: str, title: str, template: str) -> None:
        """One notification per organization"""
        by_org: Dict[str, List[Campaign]] = defaultdict(list)
        for campaign in campaigns:
            by_org[campaign.organization_id].append(campaign)

        for org_id, org_campaigns in by_org.items():
            try:
                await self.store.create_notification(
                    Notification(
                        organization_id=org_id,
                        type=kind,
                        title=title,
                        message=template.format(count=len(org_campaigns)),
                        created_at=self._clock(),
                    )
                )
            except Exception as e:
                logger.warning(f"Failed to notify organization {org_id} ({kind}): {e}")
