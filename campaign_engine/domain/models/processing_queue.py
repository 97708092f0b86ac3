"""
Processing Queue Models
AI-analysis work items for completed calls
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from campaign_engine.core.exceptions import InvalidTransitionError


class QueueItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def transition(self, target: "QueueItemStatus") -> "QueueItemStatus":
        """Return target if the move is legal, raise otherwise."""
        target = QueueItemStatus(target)
        if target not in _QUEUE_TRANSITIONS[self]:
            raise InvalidTransitionError("queue_item", self.value, target.value)
        return target


_QUEUE_TRANSITIONS = {
    QueueItemStatus.PENDING: {QueueItemStatus.PROCESSING},
    QueueItemStatus.PROCESSING: {QueueItemStatus.COMPLETED, QueueItemStatus.FAILED},
    QueueItemStatus.COMPLETED: set(),
    # Explicit requeue only
    QueueItemStatus.FAILED: {QueueItemStatus.PENDING},
}


class ProcessingQueueItem(BaseModel):
    """At most one item exists per call_id."""
    id: str
    call_id: str
    organization_id: Optional[str] = None
    priority: int = Field(default=5, ge=0, le=10)
    status: QueueItemStatus = QueueItemStatus.PENDING
    attempts: int = 0
    next_retry_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None


class EnqueueResult(BaseModel):
    """Outcome of ProcessingQueue.enqueue. A duplicate is not an error."""
    item: Optional[ProcessingQueueItem] = None
    already_queued: bool = False
    skipped_reason: Optional[str] = None

    @property
    def enqueued(self) -> bool:
        return self.item is not None and not self.already_queued
