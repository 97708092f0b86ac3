"""
Engine Exceptions
Error taxonomy shared by the dispatcher, queue, health monitor and store.
"""
from typing import Any, Optional


class CampaignEngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigurationError(CampaignEngineError):
    """
    Missing or invalid provider credentials.

    Fatal for a campaign's dispatch attempts until fixed. The dispatcher
    leaves the contact pending and records the failure on the campaign.
    """
    pass


class DispatchError(CampaignEngineError):
    """Voice provider refused or failed a place-call request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
        original_error: Optional[Exception] = None
    ):
        self.status_code = status_code
        self.body = body
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details, original_error)


class TransientProviderError(DispatchError):
    """Network failure or 5xx on call placement."""
    pass


class ScoringError(CampaignEngineError):
    """AI transcript analysis failed."""
    pass


class HealthCheckError(CampaignEngineError):
    """Provider health check failed (error, timeout or non-2xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, {"status_code": status_code} if status_code else None)


class InvalidTransitionError(CampaignEngineError):
    """An entity was asked to move to a status it cannot reach."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid {entity} transition: {current} -> {target}",
            {"entity": entity, "current": current, "target": target}
        )


class DuplicateQueueItemError(CampaignEngineError):
    """A processing-queue item already exists for this call."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__("Call already in AI processing queue", {"call_id": call_id})


class StoreError(CampaignEngineError):
    """Durable store operation failed."""
    pass
