"""Domain models"""

# Campaigns and contacts
from .campaign import (
    CampaignStatus,
    WhenToSend,
    DayHours,
    CampaignSettings,
    Campaign,
)
from .contact import (
    ContactCallStatus,
    Contact,
)

# Calls
from .call import (
    CallAttemptStatus,
    CallOutcome,
    CallAttempt,
    AnalysisResult,
    outcome_from_ended_reason,
)
from .call_events import (
    ProviderCall,
    CallStartedEvent,
    CallEndedEvent,
    HangEvent,
    UnknownCallEvent,
    parse_call_event,
)

# Sequences
from .sequence import (
    StepType,
    ProgressStatus,
    SequenceStep,
    Sequence,
    SequenceProgress,
)

# AI processing queue
from .processing_queue import (
    QueueItemStatus,
    ProcessingQueueItem,
    EnqueueResult,
)

# Provider health
from .provider_health import (
    HealthStatus,
    HealthCheckResult,
    ProviderHealthRecord,
    Notification,
)

__all__ = [
    # Campaigns and contacts
    "CampaignStatus",
    "WhenToSend",
    "DayHours",
    "CampaignSettings",
    "Campaign",
    "ContactCallStatus",
    "Contact",
    # Calls
    "CallAttemptStatus",
    "CallOutcome",
    "CallAttempt",
    "AnalysisResult",
    "outcome_from_ended_reason",
    "ProviderCall",
    "CallStartedEvent",
    "CallEndedEvent",
    "HangEvent",
    "UnknownCallEvent",
    "parse_call_event",
    # Sequences
    "StepType",
    "ProgressStatus",
    "SequenceStep",
    "Sequence",
    "SequenceProgress",
    # AI processing queue
    "QueueItemStatus",
    "ProcessingQueueItem",
    "EnqueueResult",
    # Provider health
    "HealthStatus",
    "HealthCheckResult",
    "ProviderHealthRecord",
    "Notification",
]
