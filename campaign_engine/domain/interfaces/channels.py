"""
Channel Interfaces
Fire-and-forget senders used by the sequence engine. Delivery failures are
the collaborator's concern; callers only log raised exceptions.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class SmsSender(ABC):

    @abstractmethod
    async def send_sms(
        self,
        organization_id: str,
        to_number: str,
        body: str,
        contact_id: Optional[str] = None,
        campaign_id: Optional[str] = None
    ) -> None:
        pass


class EmailSender(ABC):

    @abstractmethod
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
        pass


class CallTrigger(ABC):
    """Queues a voice dispatch through the platform's call endpoint."""

    @abstractmethod
    async def trigger_call(
        self,
        organization_id: str,
        phone_number: str,
        contact_id: str,
        campaign_id: Optional[str] = None,
        assistant_id: Optional[str] = None
    ) -> None:
        pass


class EventDispatcher(ABC):
    """Outbound organization webhooks (e.g. campaign.completed)."""

    @abstractmethod
    async def dispatch(self, organization_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        pass
