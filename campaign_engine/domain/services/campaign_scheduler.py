"""
Campaign Scheduler
One dispatch tick across every dispatchable campaign.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from campaign_engine.domain.interfaces.campaign_store import CampaignStore
from campaign_engine.domain.models.campaign import Campaign
from campaign_engine.domain.models.provider_health import HealthStatus
from campaign_engine.domain.services.call_dispatcher import CallDispatcher
from campaign_engine.domain.services.rate_limiter import RateLimiter
from campaign_engine.domain.services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """What one scheduler tick did"""
    campaigns_seen: int = 0
    dispatched: int = 0
    gated: int = 0
    retries_reset: int = 0
    errors: int = 0
    skipped_reason: Optional[str] = None


class CampaignScheduler:
    """
    Per tick:
    - Skip everything while the voice provider is down
    - For each active/running campaign without a paused_reason, dispatch
      at most one pending contact (oldest first) when the rate limiter allows
    - Independently, reset at most one retry-eligible attempt per campaign

    The scheduler never completes a campaign.
    """

    def __init__(
        self,
        store: CampaignStore,
        rate_limiter: RateLimiter,
        dispatcher: CallDispatcher,
        retry_policy: RetryPolicy,
        provider: str = "vapi"
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self.dispatcher = dispatcher
        self.retry_policy = retry_policy
        self.provider = provider

    async def tick(self, now: datetime) -> TickReport:
        report = TickReport()

        health = await self.store.latest_health(self.provider)
        if health is not None and health.status == HealthStatus.DOWN:
            logger.info(f"Provider {self.provider} is down, skipping dispatch tick")
            report.skipped_reason = "provider_down"
            return report

        campaigns = await self.store.list_dispatchable_campaigns()
        for campaign in campaigns:
            if not campaign.is_dispatchable:
                continue
            report.campaigns_seen += 1
            try:
                await self._process_campaign(campaign, now, report)
            except Exception as e:
                report.errors += 1
                logger.error(f"Error processing campaign {campaign.id}: {e}", exc_info=True)

        if report.dispatched or report.retries_reset:
            logger.info(
                f"Tick: {report.campaigns_seen} campaigns, {report.dispatched} dispatched, "
                f"{report.retries_reset} retries reset"
            )
        return report

    async def _process_campaign(self, campaign: Campaign, now: datetime, report: TickReport) -> None:
        allowed, reason = await self.rate_limiter.can_dispatch(campaign, now)
        if not allowed:
            report.gated += 1
            logger.debug(f"Campaign {campaign.id} gated: {reason}")
        else:
            contact = await self.store.next_pending_contact(campaign.id)
            if contact is not None:
                logger.info(f"Campaign {campaign.name or campaign.id}: dispatching contact {contact.id}")
                result = await self.dispatcher.dispatch(campaign, contact, now)
                if result.success:
                    report.dispatched += 1

        await self._process_retry(campaign, now, report)

    async def _process_retry(self, campaign: Campaign, now: datetime, report: TickReport) -> None:
        settings = campaign.settings
        if settings.max_retry_attempts <= 0:
            return

        candidate = await self.store.find_retry_candidate(
            campaign.id, settings.retry_conditions, settings.max_retry_attempts
        )
        if candidate is None:
            return

        if await self.retry_policy.apply(candidate, campaign, now):
            report.retries_reset += 1
