"""
AI Processing Queue
Prioritized AI analysis of completed calls.

Items are unique per call. High priority items (>= 8 by default) are
processed inline right after enqueue; the rest wait for the poller.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from campaign_engine.core.exceptions import DuplicateQueueItemError, ScoringError
from campaign_engine.domain.interfaces.ai_scorer import AIScorer
from campaign_engine.domain.interfaces.campaign_store import CampaignStore
from campaign_engine.domain.models.call import CallAttempt, CallAttemptStatus
from campaign_engine.domain.models.processing_queue import (
    EnqueueResult,
    ProcessingQueueItem,
    QueueItemStatus,
)
from campaign_engine.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)

MIN_PRIORITY = 0
MAX_PRIORITY = 10


def calculate_priority(call: CallAttempt) -> int:
    """
    Base 5:
    +2 duration > 300s, else +1 duration > 180s
    +1 call completed
    +2 outcome mentions "interested"
    +3 outcome mentions "appointment"
    Clamped to [0, 10].
    """
    priority = 5

    if call.duration > 300:
        priority += 2
    elif call.duration > 180:
        priority += 1

    if call.status == CallAttemptStatus.COMPLETED:
        priority += 1

    outcome = (call.outcome or "").lower()
    if "interested" in outcome:
        priority += 2
    if "appointment" in outcome:
        priority += 3

    return max(MIN_PRIORITY, min(priority, MAX_PRIORITY))


@dataclass
class QueueRunReport:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0


class ProcessingQueue:

    def __init__(
        self,
        store: CampaignStore,
        scorer: AIScorer,
        batch_size: int = 5,
        max_attempts: int = 3,
        retry_backoff_minutes: float = 5,
        high_priority_threshold: int = 8,
        clock: Clock = utcnow
    ):
        self.store = store
        self.scorer = scorer
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.retry_backoff_minutes = retry_backoff_minutes
        self.high_priority_threshold = high_priority_threshold
        self._clock = clock

    async def enqueue(self, call: CallAttempt) -> EnqueueResult:
        """
        Add a completed call to the queue.

        A call that is already queued is reported via `already_queued`,
        not raised.
        """
        if call.ai_processed_at is not None:
            logger.debug(f"Call {call.id} already AI-processed, not enqueuing")
            return EnqueueResult(skipped_reason="already_processed")

        item = ProcessingQueueItem(
            id=str(uuid.uuid4()),
            call_id=call.id,
            organization_id=call.organization_id,
            priority=calculate_priority(call),
            status=QueueItemStatus.PENDING,
            created_at=self._clock(),
        )

        try:
            item = await self.store.insert_queue_item(item)
        except DuplicateQueueItemError:
            logger.info(f"Call {call.id} already in AI processing queue")
            return EnqueueResult(already_queued=True)

        logger.info(f"Call {call.id} enqueued for AI processing (priority={item.priority})")

        if item.priority >= self.high_priority_threshold:
            logger.info(f"High priority call {call.id}, processing immediately")
            await self.process_item(item.id)

        return EnqueueResult(item=item)

    async def process_pending(self) -> QueueRunReport:
        """Process one batch of pending items concurrently."""
        report = QueueRunReport()

        items = await self.store.pending_queue_items(self.batch_size, self.max_attempts)
        if not items:
            return report

        results = await asyncio.gather(
            *(self.process_item(item.id) for item in items),
            return_exceptions=True,
        )

        for item, result in zip(items, results):
            if isinstance(result, BaseException):
                report.failed += 1
                logger.error(f"Unexpected error processing queue item {item.id}: {result}")
            elif result is None:
                report.skipped += 1
            elif result:
                report.successful += 1
            else:
                report.failed += 1
        report.processed = report.successful + report.failed

        logger.info(
            f"Queue processed: {report.processed} items, "
            f"{report.successful} successful, {report.failed} failed"
        )
        return report

    async def process_item(self, item_id: str) -> Optional[bool]:
        """
        Claim and score one item. Never raises.

        Returns:
            True on success, False on failure, None if the item could not
            be claimed (already taken or no longer pending).
        """
        try:
            item = await self.store.claim_queue_item(item_id, self._clock())
        except Exception as e:
            logger.error(f"Failed to claim queue item {item_id}: {e}", exc_info=True)
            return None

        if item is None:
            logger.debug(f"Queue item {item_id} not claimable")
            return None

        try:
            call = await self.store.get_call(item.call_id)
            if call is None:
                raise ScoringError("Call not found", {"call_id": item.call_id})

            analysis = await self.scorer.analyze(call, await self._campaign_context(call))

            now = self._clock()
            await self.store.apply_analysis(call.id, analysis, now)
            await self.store.complete_queue_item(
                item.id,
                {"analysis": analysis.model_dump(mode="json")},
                now,
            )
            logger.info(f"AI processing completed for call {call.id}")
            return True

        except Exception as e:
            logger.error(f"Error in AI processing of item {item.id}: {e}", exc_info=True)
            await self._fail(item, e)
            return False

    async def requeue(self, item_id: str) -> bool:
        """Move a failed item back to pending. Failed items are never requeued automatically."""
        requeued = await self.store.requeue_queue_item(item_id)
        if requeued:
            logger.info(f"Queue item {item_id} requeued")
        else:
            logger.info(f"Queue item {item_id} not requeued (missing or not failed)")
        return requeued

    async def _campaign_context(self, call: CallAttempt) -> Optional[Dict[str, Any]]:
        if not call.campaign_id:
            return None
        campaign = await self.store.get_campaign(call.campaign_id)
        if campaign is None:
            return None
        return {
            "name": campaign.name,
            "settings": campaign.settings.model_dump(mode="json"),
        }

    async def _fail(self, item: ProcessingQueueItem, error: Exception) -> None:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        next_retry_at = self._clock() + timedelta(minutes=self.retry_backoff_minutes)
        try:
            await self.store.fail_queue_item(item.id, message, next_retry_at)
        except Exception as e:
            logger.error(f"Failed to record failure for queue item {item.id}: {e}", exc_info=True)
