"""
Supabase Campaign Store
CampaignStore backed by Supabase (PostgREST).

Conditional updates are expressed as filtered UPDATEs; PostgREST returns the
rows it changed, so an empty `response.data` means another worker won.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from campaign_engine.core.exceptions import DuplicateQueueItemError, StoreError
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
from campaign_engine.domain.models.sequence import ProgressStatus, Sequence, SequenceProgress
from campaign_engine.utils.time_utils import to_iso, utcnow

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

CAMPAIGNS = "campaigns"
CONTACTS = "leads"
CALLS = "calls"
SEQUENCES = "campaign_sequences"
SEQUENCE_STEPS = "campaign_sequence_steps"
SEQUENCE_PROGRESS = "campaign_sequence_progress"
PROCESSING_QUEUE = "ai_processing_queue"
PROVIDER_HEALTH = "provider_health"
NOTIFICATIONS = "notifications"

# Domain field -> column name where they differ
_CALL_COLUMNS = {"contact_id": "lead_id", "provider_call_id": "vapi_call_id"}


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


def _row(changes: Dict[str, Any], columns: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    columns = columns or {}
    return {columns.get(key, key): _serialize(value) for key, value in changes.items()}


def _call_from_row(row: Dict[str, Any]) -> CallAttempt:
    data = dict(row)
    for field, column in _CALL_COLUMNS.items():
        if column in data:
            data[field] = data.pop(column)
    return CallAttempt.model_validate(data)


def _campaign_from_row(row: Dict[str, Any]) -> Campaign:
    data = dict(row)
    data["settings"] = data.get("settings") or {}
    return Campaign.model_validate(data)


def _sequence_from_row(row: Dict[str, Any]) -> Sequence:
    data = dict(row)
    data["steps"] = data.pop(SEQUENCE_STEPS, None) or []
    return Sequence.model_validate(data)


class SupabaseCampaignStore(CampaignStore):

    # Oldest candidates inspected per retry scan
    RETRY_SCAN_LIMIT = 20

    def __init__(self, client: AsyncClient):
        self._client = client

    @classmethod
    async def create(cls, url: str, key: str, timeout_seconds: float = 30) -> "SupabaseCampaignStore":
        """Connect with an explicit PostgREST client timeout."""
        if not url or not key:
            raise StoreError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required")
        client = await acreate_client(
            url,
            key,
            options=AsyncClientOptions(postgrest_client_timeout=timeout_seconds),
        )
        logger.info("Supabase campaign store connected")
        return cls(client)

    def _table(self, name: str):
        return self._client.table(name)

    async def _execute(self, query, operation: str):
        try:
            return await query.execute()
        except APIError as e:
            raise StoreError(f"{operation} failed: {e.message}", {"code": e.code}, e)
        except httpx.HTTPError as e:
            raise StoreError(f"{operation} failed: {e}", original_error=e)

    # ------------------------------------------------------------------
    # Campaigns
    # ------------------------------------------------------------------

    async def list_dispatchable_campaigns(self) -> List[Campaign]:
        response = await self._execute(
            self._table(CAMPAIGNS)
            .select("*")
            .in_("status", [s.value for s in DISPATCHABLE_STATUSES])
            .is_("paused_reason", "null"),
            "list_dispatchable_campaigns",
        )
        return [_campaign_from_row(row) for row in response.data or []]

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        response = await self._execute(
            self._table(CAMPAIGNS).select("*").eq("id", campaign_id).limit(1),
            "get_campaign",
        )
        return _campaign_from_row(response.data[0]) if response.data else None

    async def pause_campaigns_for_outage(self, now: datetime) -> List[Campaign]:
        response = await self._execute(
            self._table(CAMPAIGNS)
            .update({
                "status": CampaignStatus.PAUSED.value,
                "paused_reason": PROVIDER_OUTAGE,
                "updated_at": to_iso(now),
            })
            .eq("status", CampaignStatus.RUNNING.value)
            .is_("paused_reason", "null"),
            "pause_campaigns_for_outage",
        )
        return [_campaign_from_row(row) for row in response.data or []]

    async def resume_outage_campaigns(self, now: datetime) -> List[Campaign]:
        response = await self._execute(
            self._table(CAMPAIGNS)
            .update({
                "status": CampaignStatus.RUNNING.value,
                "paused_reason": None,
                "updated_at": to_iso(now),
            })
            .eq("status", CampaignStatus.PAUSED.value)
            .eq("paused_reason", PROVIDER_OUTAGE),
            "resume_outage_campaigns",
        )
        return [_campaign_from_row(row) for row in response.data or []]

    async def record_dispatch_failure(self, campaign_id: str, error: str) -> None:
        campaign = await self.get_campaign(campaign_id)
        if campaign is None:
            return
        await self._execute(
            self._table(CAMPAIGNS)
            .update({
                "dispatch_failures": campaign.dispatch_failures + 1,
                "last_dispatch_error": error,
                "updated_at": to_iso(utcnow()),
            })
            .eq("id", campaign_id),
            "record_dispatch_failure",
        )

    async def refresh_campaign_metrics(self, campaign_id: str) -> None:
        response = await self._execute(
            self._table(CALLS).select("duration, cost, status").eq("campaign_id", campaign_id),
            "refresh_campaign_metrics",
        )
        calls = response.data or []
        if not calls:
            return

        metrics = {
            "total_calls": len(calls),
            "successful_calls": len([
                c for c in calls
                if c.get("status") == CallAttemptStatus.COMPLETED.value and (c.get("duration") or 0) > 30
            ]),
            "total_duration": sum(c.get("duration") or 0 for c in calls),
            "total_cost": sum(c.get("cost") or 0 for c in calls),
            "updated_at": to_iso(utcnow()),
        }
        await self._execute(
            self._table(CAMPAIGNS).update(metrics).eq("id", campaign_id),
            "refresh_campaign_metrics",
        )
        logger.debug(f"Campaign {campaign_id} metrics updated")

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        response = await self._execute(
            self._table(CONTACTS).select("*").eq("id", contact_id).limit(1),
            "get_contact",
        )
        return Contact.model_validate(response.data[0]) if response.data else None

    async def next_pending_contact(self, campaign_id: str) -> Optional[Contact]:
        response = await self._execute(
            self._table(CONTACTS)
            .select("*")
            .eq("campaign_id", campaign_id)
            .eq("call_status", ContactCallStatus.PENDING.value)
            .order("created_at")
            .limit(1),
            "next_pending_contact",
        )
        return Contact.model_validate(response.data[0]) if response.data else None

    async def transition_contact(
        self,
        contact_id: str,
        expected: ContactCallStatus,
        target: ContactCallStatus
    ) -> bool:
        expected.transition(target)
        response = await self._execute(
            self._table(CONTACTS)
            .update({"call_status": target.value, "updated_at": to_iso(utcnow())})
            .eq("id", contact_id)
            .eq("call_status", expected.value),
            "transition_contact",
        )
        return bool(response.data)

    # ------------------------------------------------------------------
    # Call attempts
    # ------------------------------------------------------------------

    async def create_call_attempt(self, attempt: CallAttempt) -> CallAttempt:
        response = await self._execute(
            self._table(CALLS).insert(_row(attempt.model_dump(exclude_none=True), _CALL_COLUMNS)),
            "create_call_attempt",
        )
        return _call_from_row(response.data[0]) if response.data else attempt

    async def get_call(self, call_id: str) -> Optional[CallAttempt]:
        response = await self._execute(
            self._table(CALLS).select("*").eq("id", call_id).limit(1),
            "get_call",
        )
        return _call_from_row(response.data[0]) if response.data else None

    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[CallAttempt]:
        response = await self._execute(
            self._table(CALLS).select("*").eq("vapi_call_id", provider_call_id).limit(1),
            "get_call_by_provider_id",
        )
        return _call_from_row(response.data[0]) if response.data else None

    async def find_retry_candidate(
        self,
        campaign_id: str,
        retry_conditions: List[str],
        max_retry_attempts: int
    ) -> Optional[CallAttempt]:
        response = await self._execute(
            self._table(CALLS)
            .select("*")
            .eq("campaign_id", campaign_id)
            .in_("outcome", retry_conditions)
            .lt("retry_count", max_retry_attempts)
            .order("ended_at")
            .limit(self.RETRY_SCAN_LIMIT),
            "find_retry_candidate",
        )
        for row in response.data or []:
            candidate = _call_from_row(row)
            latest = await self.latest_call_for_contact(candidate.contact_id)
            if latest is not None and latest.id == candidate.id:
                return candidate
        return None

    async def latest_call_for_contact(self, contact_id: str) -> Optional[CallAttempt]:
        response = await self._execute(
            self._table(CALLS)
            .select("*")
            .eq("lead_id", contact_id)
            .order("created_at", desc=True)
            .limit(1),
            "latest_call_for_contact",
        )
        return _call_from_row(response.data[0]) if response.data else None

    async def reset_contact_for_retry(self, attempt: CallAttempt) -> bool:
        contact = await self.get_contact(attempt.contact_id)
        if contact is None or contact.call_status not in (
            ContactCallStatus.FAILED,
            ContactCallStatus.COMPLETED,
        ):
            return False

        moved = await self.transition_contact(
            contact.id, contact.call_status, ContactCallStatus.PENDING
        )
        if not moved:
            return False

        # retry_count is the compare-and-swap token
        response = await self._execute(
            self._table(CALLS)
            .update({"retry_count": attempt.retry_count + 1})
            .eq("id", attempt.id)
            .eq("retry_count", attempt.retry_count),
            "reset_contact_for_retry",
        )
        if response.data:
            return True

        # Retry already consumed: put the contact back
        await self._execute(
            self._table(CONTACTS)
            .update({"call_status": contact.call_status.value, "updated_at": to_iso(utcnow())})
            .eq("id", contact.id)
            .eq("call_status", ContactCallStatus.PENDING.value),
            "reset_contact_for_retry",
        )
        logger.warning(f"Retry for call {attempt.id} already consumed, contact {contact.id} restored")
        return False

    async def update_call(self, provider_call_id: str, changes: Dict[str, Any]) -> Optional[CallAttempt]:
        row = _row(changes, _CALL_COLUMNS)
        row["updated_at"] = to_iso(utcnow())
        response = await self._execute(
            self._table(CALLS)
            .update(row)
            .eq("vapi_call_id", provider_call_id)
            .is_("outcome", "null"),
            "update_call",
        )
        return _call_from_row(response.data[0]) if response.data else None

    async def apply_analysis(self, call_id: str, analysis: AnalysisResult, processed_at: datetime) -> None:
        row: Dict[str, Any] = {"ai_processed_at": to_iso(processed_at)}
        for field in ("outcome", "sentiment", "summary"):
            value = getattr(analysis, field)
            if value:
                row[field] = value
        await self._execute(self._table(CALLS).update(row).eq("id", call_id), "apply_analysis")

    # ------------------------------------------------------------------
    # Sequences
    # ------------------------------------------------------------------

    async def due_sequence_progress(self, now: datetime, limit: int) -> List[SequenceProgress]:
        response = await self._execute(
            self._table(SEQUENCE_PROGRESS)
            .select("*")
            .eq("status", ProgressStatus.ACTIVE.value)
            .lte("next_action_at", to_iso(now))
            .order("next_action_at")
            .limit(limit),
            "due_sequence_progress",
        )
        return [SequenceProgress.model_validate(row) for row in response.data or []]

    async def get_sequence(self, sequence_id: str) -> Optional[Sequence]:
        response = await self._execute(
            self._table(SEQUENCES)
            .select(f"id, campaign_id, organization_id, is_active, {SEQUENCE_STEPS}(*)")
            .eq("id", sequence_id)
            .limit(1),
            "get_sequence",
        )
        return _sequence_from_row(response.data[0]) if response.data else None

    async def update_progress(
        self,
        progress_id: str,
        expected_step_id: Optional[str],
        changes: Dict[str, Any]
    ) -> bool:
        query = (
            self._table(SEQUENCE_PROGRESS)
            .update(_row(changes))
            .eq("id", progress_id)
            .eq("status", ProgressStatus.ACTIVE.value)
        )
        if expected_step_id is None:
            query = query.is_("current_step_id", "null")
        else:
            query = query.eq("current_step_id", expected_step_id)
        response = await self._execute(query, "update_progress")
        return bool(response.data)

    # ------------------------------------------------------------------
    # AI processing queue
    # ------------------------------------------------------------------

    async def insert_queue_item(self, item: ProcessingQueueItem) -> ProcessingQueueItem:
        try:
            response = await self._table(PROCESSING_QUEUE).insert(
                _row(item.model_dump(exclude_none=True))
            ).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise DuplicateQueueItemError(item.call_id)
            raise StoreError(f"insert_queue_item failed: {e.message}", {"code": e.code}, e)
        return ProcessingQueueItem.model_validate(response.data[0]) if response.data else item

    async def get_queue_item(self, item_id: str) -> Optional[ProcessingQueueItem]:
        response = await self._execute(
            self._table(PROCESSING_QUEUE).select("*").eq("id", item_id).limit(1),
            "get_queue_item",
        )
        return ProcessingQueueItem.model_validate(response.data[0]) if response.data else None

    async def pending_queue_items(self, limit: int, max_attempts: int) -> List[ProcessingQueueItem]:
        response = await self._execute(
            self._table(PROCESSING_QUEUE)
            .select("*")
            .eq("status", QueueItemStatus.PENDING.value)
            .lte("attempts", max_attempts)
            .order("priority", desc=True)
            .order("created_at")
            .limit(limit),
            "pending_queue_items",
        )
        return [ProcessingQueueItem.model_validate(row) for row in response.data or []]

    async def claim_queue_item(self, item_id: str, now: datetime) -> Optional[ProcessingQueueItem]:
        response = await self._execute(
            self._table(PROCESSING_QUEUE)
            .update({
                "status": QueueItemStatus.PROCESSING.value,
                "processing_started_at": to_iso(now),
            })
            .eq("id", item_id)
            .eq("status", QueueItemStatus.PENDING.value),
            "claim_queue_item",
        )
        return ProcessingQueueItem.model_validate(response.data[0]) if response.data else None

    async def complete_queue_item(self, item_id: str, result: Dict[str, Any], now: datetime) -> None:
        await self._execute(
            self._table(PROCESSING_QUEUE)
            .update({
                "status": QueueItemStatus.COMPLETED.value,
                "result": _serialize(result),
                "processing_completed_at": to_iso(now),
            })
            .eq("id", item_id)
            .eq("status", QueueItemStatus.PROCESSING.value),
            "complete_queue_item",
        )

    async def fail_queue_item(self, item_id: str, error: str, next_retry_at: datetime) -> None:
        item = await self.get_queue_item(item_id)
        attempts = item.attempts if item else 0
        await self._execute(
            self._table(PROCESSING_QUEUE)
            .update({
                "status": QueueItemStatus.FAILED.value,
                "attempts": attempts + 1,
                "error_message": error,
                "next_retry_at": to_iso(next_retry_at),
            })
            .eq("id", item_id)
            .eq("status", QueueItemStatus.PROCESSING.value),
            "fail_queue_item",
        )

    async def requeue_queue_item(self, item_id: str) -> bool:
        response = await self._execute(
            self._table(PROCESSING_QUEUE)
            .update({"status": QueueItemStatus.PENDING.value})
            .eq("id", item_id)
            .eq("status", QueueItemStatus.FAILED.value),
            "requeue_queue_item",
        )
        return bool(response.data)

    # ------------------------------------------------------------------
    # Provider health & notifications
    # ------------------------------------------------------------------

    async def latest_health(self, provider: str) -> Optional[ProviderHealthRecord]:
        response = await self._execute(
            self._table(PROVIDER_HEALTH)
            .select("*")
            .eq("provider", provider)
            .order("checked_at", desc=True)
            .limit(1),
            "latest_health",
        )
        return ProviderHealthRecord.model_validate(response.data[0]) if response.data else None

    async def insert_health_record(self, record: ProviderHealthRecord) -> None:
        await self._execute(
            self._table(PROVIDER_HEALTH).insert(_row(record.model_dump())),
            "insert_health_record",
        )

    async def create_notification(self, notification: Notification) -> None:
        await self._execute(
            self._table(NOTIFICATIONS).insert(_row(notification.model_dump())),
            "create_notification",
        )
