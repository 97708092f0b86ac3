"""
Voice Provider Webhook Events
Tagged variants over the provider's call `type`, with an explicit unknown arm
"""
import json
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class ProviderCall(BaseModel):
    """The `call` object carried by every webhook"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    status: Optional[str] = None
    duration: float = 0
    cost: float = 0
    ended_reason: Optional[str] = Field(default=None, alias="endedReason")
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    ended_at: Optional[datetime] = Field(default=None, alias="endedAt")
    transcript: Optional[str] = None
    recording: Optional[Dict[str, Any]] = None
    messages: List[Dict[str, Any]] = Field(default_factory=list)

    @field_validator("duration", "cost", mode="before")
    @classmethod
    def _null_as_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("messages", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def recording_url(self) -> Optional[str]:
        return (self.recording or {}).get("url")

    def structured_report(self) -> Tuple[Dict[str, Any], Optional[str]]:
        """
        Parse the assistant's end-of-call report from the last message.

        Returns:
            (structured fields, notes). Non-JSON content is returned as notes,
            truncated to 1000 characters.
        """
        if not self.messages:
            return {}, None

        content = self.messages[-1].get("content")
        if not content:
            return {}, None

        try:
            data = json.loads(content)
        except (TypeError, ValueError):
            return {}, str(content)[:1000]

        if not isinstance(data, dict):
            return {}, str(content)[:1000]

        return {
            key: data[key]
            for key in ("summary", "outcome", "sentiment")
            if data.get(key)
        }, None


class CallStartedEvent(BaseModel):
    type: Literal["call-started"] = "call-started"
    call: ProviderCall


class CallEndedEvent(BaseModel):
    type: Literal["call-ended"] = "call-ended"
    call: ProviderCall


class HangEvent(BaseModel):
    type: Literal["hang"] = "hang"
    call: ProviderCall


class UnknownCallEvent(BaseModel):
    """Any webhook type this engine does not act on. Logged, never processed."""
    type: str
    call: Optional[ProviderCall] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


KnownCallEvent = Annotated[
    Union[CallStartedEvent, CallEndedEvent, HangEvent],
    Field(discriminator="type"),
]

CallEvent = Union[CallStartedEvent, CallEndedEvent, HangEvent, UnknownCallEvent]

KNOWN_EVENT_TYPES = {"call-started", "call-ended", "hang"}

_known_adapter = TypeAdapter(KnownCallEvent)


def parse_call_event(payload: Dict[str, Any]) -> CallEvent:
    """
    Parse a raw webhook body into a typed event.

    Unknown types, or known types without a `call` object, fall into the
    UnknownCallEvent arm rather than raising.
    """
    event_type = payload.get("type")
    call_data = payload.get("call")

    if event_type in KNOWN_EVENT_TYPES and isinstance(call_data, dict):
        return _known_adapter.validate_python(payload)

    return UnknownCallEvent(
        type=str(event_type),
        call=ProviderCall.model_validate(call_data) if isinstance(call_data, dict) else None,
        raw=payload,
    )
