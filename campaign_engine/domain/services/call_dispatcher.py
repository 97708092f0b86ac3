"""
Call Dispatcher
Places one outbound call for one contact and records the attempt.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from campaign_engine.core.exceptions import ConfigurationError, DispatchError
from campaign_engine.domain.interfaces.campaign_store import CampaignStore
from campaign_engine.domain.interfaces.voice_provider import CallCustomer, VoiceProviderClient
from campaign_engine.domain.models.call import CallAttempt, CallAttemptStatus
from campaign_engine.domain.models.campaign import Campaign
from campaign_engine.domain.models.contact import Contact, ContactCallStatus
from campaign_engine.domain.services.rate_limiter import RateLimiter
from campaign_engine.utils.phone import normalize_e164

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Result of a dispatch attempt"""
    success: bool
    attempt: Optional[CallAttempt] = None
    error: Optional[str] = None
    skipped: Optional[str] = None


class CallDispatcher:
    """
    Dispatch flow:
    1. Claim the contact (pending -> calling, conditional)
    2. Normalize the phone number to E.164
    3. Reserve a rate limiter permit
    4. Ask the voice provider to place the call
    5. Record the CallAttempt and bind the permit to the provider call id
    """

    def __init__(
        self,
        store: CampaignStore,
        voice_client: VoiceProviderClient,
        rate_limiter: RateLimiter,
        default_country_code: str = "44"
    ):
        self.store = store
        self.voice_client = voice_client
        self.rate_limiter = rate_limiter
        self.default_country_code = default_country_code

    async def dispatch(self, campaign: Campaign, contact: Contact, now: datetime) -> DispatchResult:
        claimed = await self.store.transition_contact(
            contact.id, ContactCallStatus.PENDING, ContactCallStatus.CALLING
        )
        if not claimed:
            logger.debug(f"Contact {contact.id} already claimed by another dispatch")
            return DispatchResult(success=False, skipped="contact_claimed")

        try:
            phone_number = normalize_e164(contact.phone, self.default_country_code)
        except ValueError as e:
            logger.warning(f"Contact {contact.id} has an unusable phone number: {e}")
            await self._settle_contact(contact.id, ContactCallStatus.FAILED)
            return DispatchResult(success=False, error=str(e))

        permit = await self.rate_limiter.try_acquire(campaign, now)
        if permit is None:
            await self._settle_contact(contact.id, ContactCallStatus.PENDING)
            return DispatchResult(success=False, skipped="rate_limited")

        customer = CallCustomer(
            number=phone_number,
            name=contact.full_name or None,
            external_id=contact.id,
        )

        try:
            response = await self.voice_client.place_call(
                assistant_id=campaign.resolved_assistant_id,
                phone_number_id=campaign.resolved_phone_number_id,
                customer=customer,
                metadata={"campaign_id": campaign.id, "contact_id": contact.id},
            )
        except ConfigurationError as e:
            await self.rate_limiter.cancel(permit)
            await self._settle_contact(contact.id, ContactCallStatus.PENDING)
            await self.store.record_dispatch_failure(campaign.id, e.message)
            logger.error(f"Campaign {campaign.id} provider configuration error: {e}")
            return DispatchResult(success=False, error=str(e))
        except DispatchError as e:
            await self.rate_limiter.cancel(permit)
            await self._settle_contact(contact.id, ContactCallStatus.FAILED)
            logger.error(f"Call to contact {contact.id} failed to dispatch: {e}")
            return DispatchResult(success=False, error=str(e))

        try:
            # Retries already spent carry over from the attempt being retried
            previous = await self.store.latest_call_for_contact(contact.id)
            attempt = await self.store.create_call_attempt(
                CallAttempt(
                    id=str(uuid.uuid4()),
                    organization_id=campaign.organization_id,
                    campaign_id=campaign.id,
                    contact_id=contact.id,
                    provider_call_id=response.id,
                    phone_number=phone_number,
                    status=CallAttemptStatus.INITIATED,
                    retry_count=previous.retry_count if previous else 0,
                    started_at=now,
                    created_at=now,
                )
            )
        except Exception as e:
            # The call is live but untracked; its slot expires at the settlement deadline
            logger.error(
                f"Call {response.id} placed for contact {contact.id} but not recorded: {e}",
                exc_info=True
            )
            await self._settle_contact(contact.id, ContactCallStatus.FAILED)
            return DispatchResult(success=False, error=f"Failed to record call {response.id}: {e}")

        await self.rate_limiter.bind(permit, response.id)

        logger.info(
            f"Dispatched call {response.id} to {phone_number} "
            f"(campaign={campaign.id}, contact={contact.id})"
        )
        return DispatchResult(success=True, attempt=attempt)

    async def _settle_contact(self, contact_id: str, target: ContactCallStatus) -> None:
        moved = await self.store.transition_contact(contact_id, ContactCallStatus.CALLING, target)
        if not moved:
            logger.warning(f"Contact {contact_id} left calling state before it could move to {target.value}")
