"""
Campaign Store Interface
Abstract durable store for campaigns, contacts, calls, sequences, the AI
processing queue and provider health.

Every mutation that can race with another worker is a conditional update
scoped to one row (id + expected prior state) and reports whether it won.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from campaign_engine.domain.models.call import AnalysisResult, CallAttempt
from campaign_engine.domain.models.campaign import Campaign
from campaign_engine.domain.models.contact import Contact, ContactCallStatus
from campaign_engine.domain.models.processing_queue import ProcessingQueueItem
from campaign_engine.domain.models.provider_health import Notification, ProviderHealthRecord
from campaign_engine.domain.models.sequence import Sequence, SequenceProgress


class CampaignStore(ABC):

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_dispatchable_campaigns(self) -> List[Campaign]:
        """Campaigns with status active/running and no paused_reason."""
        pass

    @abstractmethod
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        pass

    @abstractmethod
    async def pause_campaigns_for_outage(self, now: datetime) -> List[Campaign]:
        """
        Pause every running campaign with no paused_reason, setting
        paused_reason='provider_outage'. Returns the campaigns paused.
        """
        pass

    @abstractmethod
    async def resume_outage_campaigns(self, now: datetime) -> List[Campaign]:
        """
        Resume every paused campaign whose paused_reason is
        'provider_outage'. Returns the campaigns resumed.
        """
        pass

    @abstractmethod
    async def record_dispatch_failure(self, campaign_id: str, error: str) -> None:
        """Accumulate a dispatch failure (e.g. bad credentials) on the campaign."""
        pass

    @abstractmethod
    async def refresh_campaign_metrics(self, campaign_id: str) -> None:
        """Recompute call totals, duration and cost for the campaign."""
        pass

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        pass

    @abstractmethod
    async def next_pending_contact(self, campaign_id: str) -> Optional[Contact]:
        """Oldest contact with call_status='pending' for the campaign."""
        pass

    @abstractmethod
    async def transition_contact(
        self,
        contact_id: str,
        expected: ContactCallStatus,
        target: ContactCallStatus
    ) -> bool:
        """Move call_status from expected to target. False if the row had moved on."""
        pass

    # ------------------------------------------------------------------
    # Call attempts
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_call_attempt(self, attempt: CallAttempt) -> CallAttempt:
        pass

    @abstractmethod
    async def get_call(self, call_id: str) -> Optional[CallAttempt]:
        pass

    @abstractmethod
    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[CallAttempt]:
        pass

    @abstractmethod
    async def find_retry_candidate(
        self,
        campaign_id: str,
        retry_conditions: List[str],
        max_retry_attempts: int
    ) -> Optional[CallAttempt]:
        """
        Oldest (ended_at ascending) attempt with outcome in retry_conditions
        and retry_count < max_retry_attempts. Only the latest attempt of each
        contact is considered; earlier attempts are superseded.
        """
        pass

    @abstractmethod
    async def latest_call_for_contact(self, contact_id: str) -> Optional[CallAttempt]:
        """Most recently created attempt for the contact."""
        pass

    @abstractmethod
    async def reset_contact_for_retry(self, attempt: CallAttempt) -> bool:
        """
        Reset the owning contact (failed|completed -> pending) and increment
        attempt.retry_count (compare-and-swap on its current value).

        Returns False, with nothing changed, when the contact is not in a
        retryable state or another worker already consumed the retry.
        """
        pass

    @abstractmethod
    async def update_call(self, provider_call_id: str, changes: Dict[str, Any]) -> Optional[CallAttempt]:
        """
        Apply provider-reported fields only while outcome is still unset.

        Returns the updated attempt, or None when the call is unknown or was
        already finalized (duplicate or late webhook).
        """
        pass

    @abstractmethod
    async def apply_analysis(self, call_id: str, analysis: AnalysisResult, processed_at: datetime) -> None:
        pass

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------

    @abstractmethod
    async def due_sequence_progress(self, now: datetime, limit: int) -> List[SequenceProgress]:
        """Active progress rows with next_action_at <= now."""
        pass

    @abstractmethod
    async def get_sequence(self, sequence_id: str) -> Optional[Sequence]:
        """Sequence with its steps."""
        pass

    @abstractmethod
    async def update_progress(
        self,
        progress_id: str,
        expected_step_id: Optional[str],
        changes: Dict[str, Any]
    ) -> bool:
        """
        Conditional update keyed on (id, current_step_id, status='active').
        False if another tick already advanced the row.
        """
        pass

    # ------------------------------------------------------------------
    # AI processing queue
    # ------------------------------------------------------------------

    @abstractmethod
    async def insert_queue_item(self, item: ProcessingQueueItem) -> ProcessingQueueItem:
        """
        Raises:
            DuplicateQueueItemError: An item already exists for item.call_id
        """
        pass

    @abstractmethod
    async def get_queue_item(self, item_id: str) -> Optional[ProcessingQueueItem]:
        pass

    @abstractmethod
    async def pending_queue_items(self, limit: int, max_attempts: int) -> List[ProcessingQueueItem]:
        """Pending items with attempts <= max_attempts, priority desc, created_at asc."""
        pass

    @abstractmethod
    async def claim_queue_item(self, item_id: str, now: datetime) -> Optional[ProcessingQueueItem]:
        """pending -> processing. None if the item is not pending."""
        pass

    @abstractmethod
    async def complete_queue_item(self, item_id: str, result: Dict[str, Any], now: datetime) -> None:
        pass

    @abstractmethod
    async def fail_queue_item(self, item_id: str, error: str, next_retry_at: datetime) -> None:
        """processing -> failed, attempts += 1."""
        pass

    @abstractmethod
    async def requeue_queue_item(self, item_id: str) -> bool:
        """failed -> pending. False if the item is not failed."""
        pass

    # ------------------------------------------------------------------
    # Provider health & notifications
    # ------------------------------------------------------------------

    @abstractmethod
    async def latest_health(self, provider: str) -> Optional[ProviderHealthRecord]:
        pass

    @abstractmethod
    async def insert_health_record(self, record: ProviderHealthRecord) -> None:
        pass

    @abstractmethod
    async def create_notification(self, notification: Notification) -> None:
        pass
