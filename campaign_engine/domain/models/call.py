"""
Call Domain Models
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CallAttemptStatus(str, Enum):
    """Provider-side lifecycle of a call attempt"""
    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    HUNG_UP = "hung_up"


class CallOutcome(str, Enum):
    """Terminal classification of an attempted call"""
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    FAILED = "failed"
    VOICEMAIL = "voicemail"
    CONNECTED = "connected"


# Outcomes where nobody spoke with the assistant. Anything else, including
# free-text outcomes from the assistant report, counts as connected.
UNREACHED_OUTCOMES = {
    CallOutcome.NO_ANSWER.value,
    CallOutcome.BUSY.value,
    CallOutcome.FAILED.value,
    CallOutcome.VOICEMAIL.value,
}

_ENDED_REASON_CONNECTED = {
    "customer-ended-call",
    "assistant-ended-call",
    "assistant-said-end-call-phrase",
    "assistant-forwarded-call",
    "exceeded-max-duration",
    "silence-timed-out",
}


def outcome_from_ended_reason(ended_reason: Optional[str], duration: float = 0) -> str:
    """
    Map a provider endedReason onto a CallOutcome value.

    Used when the assistant did not report a structured outcome.
    """
    reason = (ended_reason or "").lower()
    if "did-not-answer" in reason or "no-answer" in reason:
        return CallOutcome.NO_ANSWER.value
    if "busy" in reason:
        return CallOutcome.BUSY.value
    if "voicemail" in reason:
        return CallOutcome.VOICEMAIL.value
    if reason in _ENDED_REASON_CONNECTED:
        return CallOutcome.CONNECTED.value
    if "error" in reason or "failed" in reason:
        return CallOutcome.FAILED.value
    return CallOutcome.CONNECTED.value if duration and duration > 0 else CallOutcome.FAILED.value


class CallAttempt(BaseModel):
    """
    One dispatched call.

    Immutable once `outcome` is set, except for `retry_count` and the AI
    analysis fields.
    """
    id: str
    organization_id: Optional[str] = None
    campaign_id: str
    contact_id: str
    provider_call_id: str
    phone_number: Optional[str] = None
    direction: str = "outbound"
    status: CallAttemptStatus = CallAttemptStatus.INITIATED
    outcome: Optional[str] = None
    retry_count: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration: float = 0
    cost: float = 0
    end_reason: Optional[str] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    summary: Optional[str] = None
    sentiment: Optional[str] = None
    notes: Optional[str] = None
    ai_processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        return self.outcome is not None and self.outcome not in UNREACHED_OUTCOMES


class AnalysisResult(BaseModel):
    """Output of the AI transcript scorer"""
    outcome: Optional[str] = None
    sentiment: Optional[str] = None
    summary: Optional[str] = None
    structured_data: Dict[str, Any] = Field(default_factory=dict)
