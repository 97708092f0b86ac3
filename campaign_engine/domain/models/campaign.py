"""
Campaign Domain Models
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from campaign_engine.core.exceptions import InvalidTransitionError


class CampaignStatus(str, Enum):
    """Campaign status"""
    DRAFT = "draft"
    ACTIVE = "active"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"

    def transition(self, target: "CampaignStatus") -> "CampaignStatus":
        """Return target if the move is legal, raise otherwise."""
        target = CampaignStatus(target)
        if target not in _CAMPAIGN_TRANSITIONS[self]:
            raise InvalidTransitionError("campaign", self.value, target.value)
        return target


_CAMPAIGN_TRANSITIONS = {
    CampaignStatus.DRAFT: {CampaignStatus.ACTIVE, CampaignStatus.RUNNING},
    CampaignStatus.ACTIVE: {CampaignStatus.PAUSED, CampaignStatus.COMPLETED, CampaignStatus.RUNNING},
    CampaignStatus.RUNNING: {CampaignStatus.PAUSED, CampaignStatus.COMPLETED, CampaignStatus.ACTIVE},
    CampaignStatus.PAUSED: {CampaignStatus.ACTIVE, CampaignStatus.RUNNING, CampaignStatus.COMPLETED},
    CampaignStatus.COMPLETED: set(),
}

DISPATCHABLE_STATUSES = (CampaignStatus.ACTIVE, CampaignStatus.RUNNING)

PROVIDER_OUTAGE = "provider_outage"


class WhenToSend(str, Enum):
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"


class DayHours(BaseModel):
    """Working-hours entry for one weekday ("HH:MM" local time)."""
    enabled: bool = False
    start: str = "09:00"
    end: str = "17:00"


class CampaignSettings(BaseModel):
    """
    Dispatch settings stored as JSON on the campaign row.

    Accepts both snake_case and the camelCase keys written by the dashboard.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Provider identity (overrides the campaign columns when set)
    assistant_id: Optional[str] = None
    phone_number_id: Optional[str] = None

    # Rate limits
    concurrent_calls: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("concurrent_calls", "concurrentCalls", "customConcurrency"),
    )
    calls_per_minute: float = Field(
        default=5,
        gt=0,
        validation_alias=AliasChoices("calls_per_minute", "callsPerMinute"),
    )
    calls_per_hour: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("calls_per_hour", "callsPerHour"),
    )

    # Scheduling window
    when_to_send: WhenToSend = Field(
        default=WhenToSend.IMMEDIATE,
        validation_alias=AliasChoices("when_to_send", "whenToSend"),
    )
    started_at: Optional[datetime] = None
    working_hours_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("working_hours_enabled", "workingHoursEnabled"),
    )
    working_hours: Dict[str, DayHours] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("working_hours", "workingHours"),
    )
    timezone: str = "UTC"

    # Retry policy
    max_retry_attempts: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("max_retry_attempts", "maxRetryAttempts"),
    )
    retry_conditions: List[str] = Field(
        default_factory=lambda: ["no_answer", "busy", "failed"],
        validation_alias=AliasChoices("retry_conditions", "retryConditions"),
    )
    retry_interval: float = Field(
        default=60,
        ge=0,
        validation_alias=AliasChoices("retry_interval", "retryInterval"),
        description="Minutes between a call ending and its retry",
    )

    @property
    def min_call_interval_ms(self) -> float:
        return 60000 / self.calls_per_minute


class Campaign(BaseModel):
    """Campaign for outbound calls"""
    id: str
    organization_id: str
    name: str = ""
    status: CampaignStatus = CampaignStatus.DRAFT
    paused_reason: Optional[str] = None
    assistant_id: Optional[str] = None
    phone_number_id: Optional[str] = None
    settings: CampaignSettings = Field(default_factory=CampaignSettings)
    dispatch_failures: int = 0
    last_dispatch_error: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_dispatchable(self) -> bool:
        return self.status in DISPATCHABLE_STATUSES and self.paused_reason is None

    @property
    def resolved_assistant_id(self) -> Optional[str]:
        return self.settings.assistant_id or self.assistant_id

    @property
    def resolved_phone_number_id(self) -> Optional[str]:
        return self.settings.phone_number_id or self.phone_number_id
