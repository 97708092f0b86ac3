"""
Internal Platform Channels
SMS, email, call and webhook-event senders that post to the platform's
internal function endpoints.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from campaign_engine.domain.interfaces.channels import (
    CallTrigger,
    EmailSender,
    EventDispatcher,
    SmsSender,
)

logger = logging.getLogger(__name__)


class InternalApiChannels(SmsSender, EmailSender, CallTrigger, EventDispatcher):
    """
    One HTTP client for every outbound channel.

    Requests are flagged with `_serviceCall` so the platform skips user auth.
    Non-2xx responses raise httpx.HTTPStatusError; callers decide whether
    that matters.
    """

    SMS_ENDPOINT = "sms-send"
    EMAIL_ENDPOINT = "email-send"
    CALL_ENDPOINT = "make-call"
    EVENT_ENDPOINT = "webhook-dispatch"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def _post(self, endpoint: str, body: Dict[str, Any]) -> None:
        response = await self._client.post(
            f"{self._base_url}/{endpoint}",
            json={k: v for k, v in body.items() if v is not None},
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

    async def send_sms(
        self,
        organization_id: str,
        to_number: str,
        body: str,
        contact_id: Optional[str] = None,
        campaign_id: Optional[str] = None
    ) -> None:
        await self._post(self.SMS_ENDPOINT, {
            "organizationId": organization_id,
            "to": to_number,
            "body": body,
            "contactId": contact_id,
            "campaignId": campaign_id,
            "_serviceCall": True,
        })
        logger.info(f"SMS queued for {to_number}")

    async def send_email(
        self,
        organization_id: str,
        to_email: str,
        template_id: Optional[str] = None,
        subject: Optional[str] = None,
        body_html: Optional[str] = None,
        variables: Optional[Dict[str, str]] = None,
        contact_id: Optional[str] = None,
        campaign_id: Optional[str] = None
    ) -> None:
        await self._post(self.EMAIL_ENDPOINT, {
            "organizationId": organization_id,
            "to": to_email,
            "templateId": template_id,
            "subject": subject,
            "bodyHtml": body_html,
            "variables": variables or {},
            "contactId": contact_id,
            "campaignId": campaign_id,
            "_serviceCall": True,
        })
        logger.info(f"Email queued for {to_email}")

    async def trigger_call(
        self,
        organization_id: str,
        phone_number: str,
        contact_id: str,
        campaign_id: Optional[str] = None,
        assistant_id: Optional[str] = None
    ) -> None:
        await self._post(self.CALL_ENDPOINT, {
            "organizationId": organization_id,
            "assistantId": assistant_id,
            "phoneNumber": phone_number,
            "contactId": contact_id,
            "campaignId": campaign_id,
            "_serviceCall": True,
        })
        logger.info(f"Call requested for contact {contact_id}")

    async def dispatch(self, organization_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        await self._post(self.EVENT_ENDPOINT, {
            "organizationId": organization_id,
            "eventType": event_type,
            "payload": payload,
        })

    async def close(self) -> None:
        await self._client.aclose()
