"""
Retry Policy
Decides whether a finished call attempt may be re-dispatched.
"""
import logging
from datetime import datetime, timedelta

from campaign_engine.domain.interfaces.campaign_store import CampaignStore
from campaign_engine.domain.models.call import CallAttempt
from campaign_engine.domain.models.campaign import Campaign
from campaign_engine.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    An attempt is retry-eligible when all hold:
    - its outcome is one of the campaign's retry_conditions
    - retry_count < max_retry_attempts
    - at least retry_interval minutes have passed since it ended

    max_retry_attempts == 0 disables retries.
    """

    def __init__(self, store: CampaignStore):
        self.store = store

    def is_retry_eligible(self, attempt: CallAttempt, campaign: Campaign, now: datetime) -> bool:
        settings = campaign.settings

        if settings.max_retry_attempts <= 0:
            return False
        if not attempt.outcome or attempt.outcome not in settings.retry_conditions:
            return False
        if attempt.retry_count >= settings.max_retry_attempts:
            return False
        if attempt.ended_at is None:
            return False

        waited = ensure_utc(now) - ensure_utc(attempt.ended_at)
        return waited >= timedelta(minutes=settings.retry_interval)

    async def apply(self, attempt: CallAttempt, campaign: Campaign, now: datetime) -> bool:
        """
        Reset the contact to pending and bump retry_count when eligible.

        Returns:
            True if this call performed the reset. False when ineligible or
            another worker already consumed this retry.
        """
        if not self.is_retry_eligible(attempt, campaign, now):
            return False

        applied = await self.store.reset_contact_for_retry(attempt)
        if applied:
            logger.info(
                f"Retry {attempt.retry_count + 1}/{campaign.settings.max_retry_attempts} "
                f"scheduled for contact {attempt.contact_id} (outcome={attempt.outcome})"
            )
        else:
            logger.debug(f"Retry for call {attempt.id} already applied elsewhere")
        return applied
