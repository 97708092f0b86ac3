"""
Call Result Handler
Consumes voice provider webhooks: updates call records, settles the contact
and rate limiter slot, refreshes campaign metrics and enqueues completed
calls for AI analysis.

Idempotent on the provider call id: once a call has an outcome, later
events for it are ignored.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from campaign_engine.domain.interfaces.campaign_store import CampaignStore
from campaign_engine.domain.models.call import (
    CallAttempt,
    CallAttemptStatus,
    outcome_from_ended_reason,
)
from campaign_engine.domain.models.call_events import (
    CallEndedEvent,
    CallEvent,
    CallStartedEvent,
    HangEvent,
    UnknownCallEvent,
    parse_call_event,
)
from campaign_engine.domain.models.contact import ContactCallStatus
from campaign_engine.domain.models.processing_queue import EnqueueResult
from campaign_engine.domain.services.processing_queue import ProcessingQueue
from campaign_engine.domain.services.rate_limiter import RateLimiter
from campaign_engine.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class CallEventResult:
    event_type: str
    call_id: Optional[str] = None
    handled: bool = False
    duplicate: bool = False
    slot_released: bool = False
    enqueue: Optional[EnqueueResult] = None

    @property
    def ai_processing_queued(self) -> bool:
        return self.enqueue is not None and self.enqueue.enqueued


class CallResultHandler:

    def __init__(
        self,
        store: CampaignStore,
        rate_limiter: RateLimiter,
        processing_queue: ProcessingQueue,
        min_duration_for_analysis: float = 30,
        clock: Clock = utcnow
    ):
        self.store = store
        self.rate_limiter = rate_limiter
        self.processing_queue = processing_queue
        self.min_duration_for_analysis = min_duration_for_analysis
        self._clock = clock

    async def handle(self, payload: Dict[str, Any]) -> CallEventResult:
        """Parse and handle a raw webhook body."""
        return await self.handle_event(parse_call_event(payload))

    async def handle_event(self, event: CallEvent) -> CallEventResult:
        call_id = event.call.id if event.call else None
        logger.info(
            f"Received voice webhook: type={event.type} call={call_id} "
            f"duration={event.call.duration if event.call else None}"
        )

        if isinstance(event, UnknownCallEvent):
            logger.info(f"Unhandled webhook type: {event.type}")
            return CallEventResult(event_type=event.type, call_id=call_id)

        if not call_id:
            logger.warning(f"No call id in {event.type} webhook")
            return CallEventResult(event_type=event.type)

        if isinstance(event, CallStartedEvent):
            return await self._call_started(event)
        if isinstance(event, HangEvent):
            return await self._hang(event)
        return await self._call_ended(event)

    async def _call_started(self, event: CallStartedEvent) -> CallEventResult:
        result = CallEventResult(event_type=event.type, call_id=event.call.id)
        updated = await self.store.update_call(
            event.call.id,
            {
                "status": CallAttemptStatus.IN_PROGRESS,
                "started_at": event.call.started_at or self._clock(),
            },
        )
        result.handled = updated is not None
        result.duplicate = updated is None
        return result

    async def _hang(self, event: HangEvent) -> CallEventResult:
        result = CallEventResult(event_type=event.type, call_id=event.call.id)
        updated = await self.store.update_call(
            event.call.id,
            {"status": CallAttemptStatus.HUNG_UP, "ended_at": self._clock()},
        )
        if updated is None:
            result.duplicate = True
            return result

        result.handled = True
        result.slot_released = await self.rate_limiter.release(updated.campaign_id, updated.provider_call_id)
        return result

    async def _call_ended(self, event: CallEndedEvent) -> CallEventResult:
        call = event.call
        result = CallEventResult(event_type=event.type, call_id=call.id)

        changes: Dict[str, Any] = {
            "status": CallAttemptStatus.COMPLETED,
            "ended_at": call.ended_at or self._clock(),
            "duration": call.duration or 0,
            "cost": call.cost or 0,
            "end_reason": call.ended_reason,
        }
        if call.transcript:
            changes["transcript"] = call.transcript
        if call.recording_url:
            changes["recording_url"] = call.recording_url

        report, notes = call.structured_report()
        changes.update(report)
        if notes:
            changes["notes"] = notes
        if not changes.get("outcome"):
            changes["outcome"] = outcome_from_ended_reason(call.ended_reason, call.duration)

        updated = await self.store.update_call(call.id, changes)
        if updated is None:
            logger.info(f"Call {call.id} unknown or already finalized, ignoring call-ended")
            result.duplicate = True
            return result

        result.handled = True
        logger.info(f"Call {call.id} ended: outcome={updated.outcome} duration={updated.duration}")

        result.slot_released = await self.rate_limiter.release(updated.campaign_id, updated.provider_call_id)
        await self._settle_contact(updated)

        try:
            await self.store.refresh_campaign_metrics(updated.campaign_id)
        except Exception as e:
            logger.error(f"Error updating campaign metrics for {updated.campaign_id}: {e}", exc_info=True)

        if updated.transcript and updated.duration > self.min_duration_for_analysis:
            try:
                result.enqueue = await self.processing_queue.enqueue(updated)
            except Exception as e:
                logger.error(f"Failed to enqueue call {updated.id} for AI processing: {e}", exc_info=True)

        return result

    async def _settle_contact(self, call: CallAttempt) -> None:
        target = ContactCallStatus.COMPLETED if call.is_connected else ContactCallStatus.FAILED
        moved = await self.store.transition_contact(call.contact_id, ContactCallStatus.CALLING, target)
        if not moved:
            logger.debug(f"Contact {call.contact_id} not in calling state, leaving as is")
