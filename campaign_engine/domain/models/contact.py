"""
Contact Domain Models
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from campaign_engine.core.exceptions import InvalidTransitionError


class ContactCallStatus(str, Enum):
    """Outbound call state of a contact. CALLING is the in-flight mutex."""
    PENDING = "pending"
    CALLING = "calling"
    FAILED = "failed"
    COMPLETED = "completed"

    def transition(self, target: "ContactCallStatus") -> "ContactCallStatus":
        """Return target if the move is legal, raise otherwise."""
        target = ContactCallStatus(target)
        if target not in _CONTACT_TRANSITIONS[self]:
            raise InvalidTransitionError("contact", self.value, target.value)
        return target


_CONTACT_TRANSITIONS = {
    ContactCallStatus.PENDING: {ContactCallStatus.CALLING},
    ContactCallStatus.CALLING: {
        ContactCallStatus.PENDING,
        ContactCallStatus.FAILED,
        ContactCallStatus.COMPLETED,
    },
    # Retry resets
    ContactCallStatus.FAILED: {ContactCallStatus.PENDING},
    ContactCallStatus.COMPLETED: {ContactCallStatus.PENDING},
}


class Contact(BaseModel):
    """Lead/Contact for calling"""
    id: str
    campaign_id: str
    organization_id: Optional[str] = None
    phone: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    call_status: ContactCallStatus = ContactCallStatus.PENDING
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def template_variables(self) -> Dict[str, str]:
        """Values for {{first_name}}-style placeholders; missing values are empty."""
        return {
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "company": self.company or "",
            "email": self.email or "",
            "phone": self.phone or "",
        }
