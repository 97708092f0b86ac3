"""
Provider Health Models
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from campaign_engine.utils.time_utils import utcnow


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class HealthCheckResult(BaseModel):
    """Raw classification of a single health check, before hysteresis"""
    status: HealthStatus
    response_time_ms: int = 0
    error_message: Optional[str] = None


class ProviderHealthRecord(BaseModel):
    """Append-only log row; the newest row is the current health"""
    provider: str
    status: HealthStatus
    response_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    consecutive_failures: int = 0
    checked_at: datetime = Field(default_factory=utcnow)


class Notification(BaseModel):
    """Organization-facing notice (outage, recovery)"""
    organization_id: str
    type: str
    title: str
    message: str
    created_at: datetime = Field(default_factory=utcnow)
