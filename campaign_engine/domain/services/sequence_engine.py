"""
Sequence Engine
Advances contacts through multi-step touch sequences
(call -> wait -> sms -> wait -> email).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from campaign_engine.domain.interfaces.campaign_store import CampaignStore
from campaign_engine.domain.interfaces.channels import (
    CallTrigger,
    EmailSender,
    EventDispatcher,
    SmsSender,
)
from campaign_engine.domain.models.contact import Contact
from campaign_engine.domain.models.sequence import (
    ProgressStatus,
    Sequence,
    SequenceProgress,
    SequenceStep,
    StepType,
)

logger = logging.getLogger(__name__)

TEMPLATE_VARIABLES = ("first_name", "last_name", "company", "email", "phone")

CAMPAIGN_COMPLETED_EVENT = "campaign.completed"


def render_variables(template: str, contact: Contact) -> str:
    """
    Substitute {{first_name}}, {{last_name}}, {{company}}, {{email}} and
    {{phone}} literally. Missing values render as empty strings; any other
    placeholder is left untouched.
    """
    values = contact.template_variables()
    rendered = template or ""
    for name in TEMPLATE_VARIABLES:
        rendered = rendered.replace("{{" + name + "}}", values.get(name, ""))
    return rendered


@dataclass
class SequenceTickReport:
    due: int = 0
    processed: int = 0
    completed: int = 0
    paused: int = 0
    failed: int = 0
    conflicts: int = 0
    errors: int = 0


class SequenceEngine:
    """
    Executes the current step of every due progress row and schedules the
    next one. Channel failures are logged and never block advancement.
    """

    def __init__(
        self,
        store: CampaignStore,
        sms_sender: SmsSender,
        email_sender: EmailSender,
        call_trigger: CallTrigger,
        event_dispatcher: EventDispatcher,
        batch_size: int = 100,
        inter_step_delay_seconds: float = 30,
        default_wait_hours: float = 24
    ):
        self.store = store
        self.sms_sender = sms_sender
        self.email_sender = email_sender
        self.call_trigger = call_trigger
        self.event_dispatcher = event_dispatcher
        self.batch_size = batch_size
        self.inter_step_delay_seconds = inter_step_delay_seconds
        self.default_wait_hours = default_wait_hours

    async def tick(self, now: datetime) -> SequenceTickReport:
        report = SequenceTickReport()

        due = await self.store.due_sequence_progress(now, self.batch_size)
        report.due = len(due)

        for progress in due:
            try:
                await self._process(progress, now, report)
            except Exception as e:
                report.errors += 1
                logger.error(f"Sequence step error for progress {progress.id}: {e}", exc_info=True)
                try:
                    await self._mark(progress, ProgressStatus.FAILED, report)
                except Exception as mark_error:
                    logger.error(f"Could not mark progress {progress.id} failed: {mark_error}")

        if report.due:
            logger.info(
                f"Sequence tick: {report.processed}/{report.due} processed, "
                f"{report.completed} completed, {report.failed} failed, {report.errors} errors"
            )
        return report

    async def _process(self, progress: SequenceProgress, now: datetime, report: SequenceTickReport) -> None:
        sequence = await self.store.get_sequence(progress.sequence_id)
        if sequence is None or not sequence.is_active:
            logger.info(f"Sequence {progress.sequence_id} inactive, pausing progress {progress.id}")
            await self._mark(progress, ProgressStatus.PAUSED, report)
            return

        steps = sequence.ordered_steps()
        if not steps:
            logger.info(f"Sequence {sequence.id} has no steps, completing progress {progress.id}")
            changes = {
                "status": progress.status.transition(ProgressStatus.COMPLETED),
                "completed_at": now,
            }
            if await self._update(progress, changes, report):
                report.completed += 1
            return

        step = next((s for s in steps if s.id == progress.current_step_id), steps[0])

        contact = await self.store.get_contact(progress.contact_id)
        if contact is None:
            logger.warning(f"Contact {progress.contact_id} missing for progress {progress.id}")
            await self._mark(progress, ProgressStatus.FAILED, report)
            return

        await self.execute_step(step, contact, sequence)
        await self._advance(progress, step, steps, sequence, now, report)
        report.processed += 1

    async def execute_step(self, step: SequenceStep, contact: Contact, sequence: Sequence) -> None:
        """Run one step's channel action. Channel errors are logged, not raised."""
        config = step.config or {}
        org_id = sequence.organization_id

        try:
            if step.step_type == StepType.CALL:
                await self.call_trigger.trigger_call(
                    organization_id=org_id,
                    phone_number=contact.phone,
                    contact_id=contact.id,
                    campaign_id=sequence.campaign_id,
                    assistant_id=config.get("assistant_id"),
                )
            elif step.step_type == StepType.SMS:
                await self.sms_sender.send_sms(
                    organization_id=org_id,
                    to_number=contact.phone,
                    body=render_variables(config.get("body", ""), contact),
                    contact_id=contact.id,
                    campaign_id=sequence.campaign_id,
                )
            elif step.step_type == StepType.EMAIL:
                template_id = config.get("template_id")
                await self.email_sender.send_email(
                    organization_id=org_id,
                    to_email=contact.email,
                    template_id=template_id if template_id != "custom" else None,
                    subject=config.get("subject"),
                    body_html=config.get("body"),
                    variables=contact.template_variables(),
                    contact_id=contact.id,
                    campaign_id=sequence.campaign_id,
                )
            # WAIT: the delay is applied when scheduling, nothing to send
        except Exception as e:
            logger.error(
                f"Sequence {step.step_type.value} step {step.id} failed for contact {contact.id}: {e}",
                exc_info=True,
            )

    async def _advance(
        self,
        progress: SequenceProgress,
        step: SequenceStep,
        steps: List[SequenceStep],
        sequence: Sequence,
        now: datetime,
        report: SequenceTickReport
    ) -> None:
        index = next(i for i, s in enumerate(steps) if s.id == step.id)
        next_step = steps[index + 1] if index + 1 < len(steps) else None

        if next_step is None:
            changes = {
                "status": progress.status.transition(ProgressStatus.COMPLETED),
                "completed_at": now,
                "current_step_id": step.id,
            }
            if await self._update(progress, changes, report):
                report.completed += 1
                await self._emit_completed(sequence, progress)
            return

        if next_step.step_type == StepType.WAIT:
            hours = (next_step.config or {}).get("duration_hours") or self.default_wait_hours
            next_action_at = now + timedelta(hours=float(hours))
            after_wait = steps[index + 2] if index + 2 < len(steps) else None

            if after_wait is not None:
                changes = {
                    "current_step_id": after_wait.id,
                    "next_action_at": next_action_at,
                }
            else:
                # Trailing wait: the sequence completes once the wait elapses
                changes = {
                    "status": progress.status.transition(ProgressStatus.COMPLETED),
                    "completed_at": next_action_at,
                    "current_step_id": next_step.id,
                }
                if await self._update(progress, changes, report):
                    report.completed += 1
                return
        else:
            changes = {
                "current_step_id": next_step.id,
                "next_action_at": now + timedelta(seconds=self.inter_step_delay_seconds),
            }

        await self._update(progress, changes, report)

    async def _emit_completed(self, sequence: Sequence, progress: SequenceProgress) -> None:
        try:
            await self.event_dispatcher.dispatch(
                sequence.organization_id,
                CAMPAIGN_COMPLETED_EVENT,
                {"sequenceId": sequence.id, "contactId": progress.contact_id},
            )
        except Exception as e:
            logger.warning(f"Failed to dispatch {CAMPAIGN_COMPLETED_EVENT} for progress {progress.id}: {e}")

    async def _mark(self, progress: SequenceProgress, status: ProgressStatus, report: SequenceTickReport) -> None:
        changes = {"status": progress.status.transition(status)}
        if await self._update(progress, changes, report):
            if status == ProgressStatus.PAUSED:
                report.paused += 1
            elif status == ProgressStatus.FAILED:
                report.failed += 1

    async def _update(
        self,
        progress: SequenceProgress,
        changes: Dict[str, Any],
        report: SequenceTickReport
    ) -> bool:
        won = await self.store.update_progress(progress.id, progress.current_step_id, changes)
        if not won:
            report.conflicts += 1
            logger.info(f"Progress {progress.id} was advanced by another worker, skipping")
        return won
