"""
In-Memory Campaign Store
Process-local CampaignStore used by tests and single-process demos.

Each method runs without awaiting, so every conditional update is atomic
with respect to other coroutines on the same event loop.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from campaign_engine.core.exceptions import DuplicateQueueItemError
from campaign_engine.domain.interfaces.campaign_store import CampaignStore
from campaign_engine.domain.models.call import AnalysisResult, CallAttempt, CallAttemptStatus
from campaign_engine.domain.models.campaign import (
    DISPATCHABLE_STATUSES,
    PROVIDER_OUTAGE,
    Campaign,
    CampaignStatus,
)
from campaign_engine.domain.models.contact import Contact, ContactCallStatus
from campaign_engine.domain.models.processing_queue import ProcessingQueueItem, QueueItemStatus
from campaign_engine.domain.models.provider_health import Notification, ProviderHealthRecord
from campaign_engine.domain.models.sequence import (
    ProgressStatus,
    Sequence,
    SequenceProgress,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)

RETRYABLE_CONTACT_STATUSES = (ContactCallStatus.FAILED, ContactCallStatus.COMPLETED)


class InMemoryCampaignStore(CampaignStore):

    def __init__(self):
        self.campaigns: Dict[str, Campaign] = {}
        self.contacts: Dict[str, Contact] = {}
        self.calls: Dict[str, CallAttempt] = {}
        self.sequences: Dict[str, Sequence] = {}
        self.progress: Dict[str, SequenceProgress] = {}
        self.queue: Dict[str, ProcessingQueueItem] = {}
        self.health: List[ProviderHealthRecord] = []
        self.notifications: List[Notification] = []
        self.campaign_metrics: Dict[str, Dict[str, Any]] = {}

    # Seeding helpers

    def add_campaign(self, campaign: Campaign) -> Campaign:
        self.campaigns[campaign.id] = campaign
        return campaign

    def add_contact(self, contact: Contact) -> Contact:
        self.contacts[contact.id] = contact
        return contact

    def add_call(self, call: CallAttempt) -> CallAttempt:
        self.calls[call.id] = call
        return call

    def add_sequence(self, sequence: Sequence) -> Sequence:
        self.sequences[sequence.id] = sequence
        return sequence

    def add_progress(self, progress: SequenceProgress) -> SequenceProgress:
        self.progress[progress.id] = progress
        return progress

    # Campaigns

    async def list_dispatchable_campaigns(self) -> List[Campaign]:
        return [
            c for c in self.campaigns.values()
            if c.status in DISPATCHABLE_STATUSES and c.paused_reason is None
        ]

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        return self.campaigns.get(campaign_id)

    async def pause_campaigns_for_outage(self, now: datetime) -> List[Campaign]:
        paused = []
        for campaign in list(self.campaigns.values()):
            if campaign.status == CampaignStatus.RUNNING and campaign.paused_reason is None:
                updated = campaign.model_copy(update={
                    "status": campaign.status.transition(CampaignStatus.PAUSED),
                    "paused_reason": PROVIDER_OUTAGE,
                })
                self.campaigns[campaign.id] = updated
                paused.append(updated)
        return paused

    async def resume_outage_campaigns(self, now: datetime) -> List[Campaign]:
        resumed = []
        for campaign in list(self.campaigns.values()):
            if campaign.status == CampaignStatus.PAUSED and campaign.paused_reason == PROVIDER_OUTAGE:
                updated = campaign.model_copy(update={
                    "status": campaign.status.transition(CampaignStatus.RUNNING),
                    "paused_reason": None,
                })
                self.campaigns[campaign.id] = updated
                resumed.append(updated)
        return resumed

    async def record_dispatch_failure(self, campaign_id: str, error: str) -> None:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None:
            return
        self.campaigns[campaign_id] = campaign.model_copy(update={
            "dispatch_failures": campaign.dispatch_failures + 1,
            "last_dispatch_error": error,
        })

    async def refresh_campaign_metrics(self, campaign_id: str) -> None:
        calls = [c for c in self.calls.values() if c.campaign_id == campaign_id]
        if not calls:
            return
        self.campaign_metrics[campaign_id] = {
            "total_calls": len(calls),
            "successful_calls": len([
                c for c in calls
                if c.status == CallAttemptStatus.COMPLETED and c.duration > 30
            ]),
            "total_duration": sum(c.duration for c in calls),
            "total_cost": sum(c.cost for c in calls),
        }

    # Contacts

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        return self.contacts.get(contact_id)

    async def next_pending_contact(self, campaign_id: str) -> Optional[Contact]:
        pending = [
            c for c in self.contacts.values()
            if c.campaign_id == campaign_id and c.call_status == ContactCallStatus.PENDING
        ]
        if not pending:
            return None
        return min(pending, key=lambda c: c.created_at or _EPOCH)

    async def transition_contact(
        self,
        contact_id: str,
        expected: ContactCallStatus,
        target: ContactCallStatus
    ) -> bool:
        contact = self.contacts.get(contact_id)
        if contact is None or contact.call_status != expected:
            return False
        self.contacts[contact_id] = contact.model_copy(
            update={"call_status": contact.call_status.transition(target)}
        )
        return True

    # Call attempts

    async def create_call_attempt(self, attempt: CallAttempt) -> CallAttempt:
        self.calls[attempt.id] = attempt
        return attempt

    async def get_call(self, call_id: str) -> Optional[CallAttempt]:
        return self.calls.get(call_id)

    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[CallAttempt]:
        for call in self.calls.values():
            if call.provider_call_id == provider_call_id:
                return call
        return None

    async def find_retry_candidate(
        self,
        campaign_id: str,
        retry_conditions: List[str],
        max_retry_attempts: int
    ) -> Optional[CallAttempt]:
        # Insertion order is creation order
        latest: Dict[str, str] = {}
        for call in self.calls.values():
            latest[call.contact_id] = call.id

        candidates = [
            c for c in self.calls.values()
            if c.campaign_id == campaign_id
            and latest[c.contact_id] == c.id
            and c.outcome in retry_conditions
            and c.retry_count < max_retry_attempts
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda c: c.ended_at or _FAR_FUTURE)

    async def latest_call_for_contact(self, contact_id: str) -> Optional[CallAttempt]:
        latest = None
        for call in self.calls.values():
            if call.contact_id == contact_id:
                latest = call
        return latest

    async def reset_contact_for_retry(self, attempt: CallAttempt) -> bool:
        current = self.calls.get(attempt.id)
        if current is None or current.retry_count != attempt.retry_count:
            return False

        contact = self.contacts.get(attempt.contact_id)
        if contact is None or contact.call_status not in RETRYABLE_CONTACT_STATUSES:
            return False

        self.calls[attempt.id] = current.model_copy(update={"retry_count": current.retry_count + 1})
        self.contacts[contact.id] = contact.model_copy(
            update={"call_status": contact.call_status.transition(ContactCallStatus.PENDING)}
        )
        return True

    async def update_call(self, provider_call_id: str, changes: Dict[str, Any]) -> Optional[CallAttempt]:
        call = await self.get_call_by_provider_id(provider_call_id)
        if call is None or call.outcome is not None:
            return None
        updated = call.model_copy(update=changes)
        self.calls[call.id] = updated
        return updated

    async def apply_analysis(self, call_id: str, analysis: AnalysisResult, processed_at: datetime) -> None:
        call = self.calls.get(call_id)
        if call is None:
            return
        update: Dict[str, Any] = {"ai_processed_at": processed_at}
        for field in ("outcome", "sentiment", "summary"):
            value = getattr(analysis, field)
            if value:
                update[field] = value
        self.calls[call_id] = call.model_copy(update=update)

    # Sequences

    async def due_sequence_progress(self, now: datetime, limit: int) -> List[SequenceProgress]:
        due = [
            p for p in self.progress.values()
            if p.status == ProgressStatus.ACTIVE
            and p.next_action_at is not None
            and p.next_action_at <= now
        ]
        due.sort(key=lambda p: p.next_action_at)
        return due[:limit]

    async def get_sequence(self, sequence_id: str) -> Optional[Sequence]:
        return self.sequences.get(sequence_id)

    async def update_progress(
        self,
        progress_id: str,
        expected_step_id: Optional[str],
        changes: Dict[str, Any]
    ) -> bool:
        progress = self.progress.get(progress_id)
        if progress is None:
            return False
        if progress.status != ProgressStatus.ACTIVE or progress.current_step_id != expected_step_id:
            return False
        self.progress[progress_id] = progress.model_copy(update=changes)
        return True

    # AI processing queue

    async def insert_queue_item(self, item: ProcessingQueueItem) -> ProcessingQueueItem:
        if any(existing.call_id == item.call_id for existing in self.queue.values()):
            raise DuplicateQueueItemError(item.call_id)
        self.queue[item.id] = item
        return item

    async def get_queue_item(self, item_id: str) -> Optional[ProcessingQueueItem]:
        return self.queue.get(item_id)

    async def pending_queue_items(self, limit: int, max_attempts: int) -> List[ProcessingQueueItem]:
        pending = [
            i for i in self.queue.values()
            if i.status == QueueItemStatus.PENDING and i.attempts <= max_attempts
        ]
        pending.sort(key=lambda i: (-i.priority, i.created_at or _EPOCH))
        return pending[:limit]

    async def claim_queue_item(self, item_id: str, now: datetime) -> Optional[ProcessingQueueItem]:
        item = self.queue.get(item_id)
        if item is None or item.status != QueueItemStatus.PENDING:
            return None
        claimed = item.model_copy(update={
            "status": item.status.transition(QueueItemStatus.PROCESSING),
            "processing_started_at": now,
        })
        self.queue[item_id] = claimed
        return claimed

    async def complete_queue_item(self, item_id: str, result: Dict[str, Any], now: datetime) -> None:
        item = self.queue[item_id]
        self.queue[item_id] = item.model_copy(update={
            "status": item.status.transition(QueueItemStatus.COMPLETED),
            "result": result,
            "processing_completed_at": now,
        })

    async def fail_queue_item(self, item_id: str, error: str, next_retry_at: datetime) -> None:
        item = self.queue[item_id]
        self.queue[item_id] = item.model_copy(update={
            "status": item.status.transition(QueueItemStatus.FAILED),
            "attempts": item.attempts + 1,
            "error_message": error,
            "next_retry_at": next_retry_at,
        })

    async def requeue_queue_item(self, item_id: str) -> bool:
        item = self.queue.get(item_id)
        if item is None or item.status != QueueItemStatus.FAILED:
            return False
        self.queue[item_id] = item.model_copy(
            update={"status": item.status.transition(QueueItemStatus.PENDING)}
        )
        return True

    # Provider health & notifications

    async def latest_health(self, provider: str) -> Optional[ProviderHealthRecord]:
        records = [r for r in self.health if r.provider == provider]
        if not records:
            return None
        # Stable: the later append wins a checked_at tie
        return max(reversed(records), key=lambda r: r.checked_at)

    async def insert_health_record(self, record: ProviderHealthRecord) -> None:
        self.health.append(record)

    async def create_notification(self, notification: Notification) -> None:
        self.notifications.append(notification)
