"""
Unit Tests for the Sequence Engine
Tests step execution, wait scheduling, completion and conditional advancement
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from campaign_engine.domain.models.contact import Contact
from campaign_engine.domain.models.sequence import (
    ProgressStatus,
    Sequence,
    SequenceProgress,
    SequenceStep,
    StepType,
)
from campaign_engine.domain.services.sequence_engine import (
    CAMPAIGN_COMPLETED_EVENT,
    SequenceEngine,
    render_variables,
)
from campaign_engine.infrastructure.storage.memory_store import InMemoryCampaignStore

NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


def step(step_id, order, step_type, **config) -> SequenceStep:
    return SequenceStep(
        id=step_id,
        sequence_id="sequence-1",
        step_order=order,
        step_type=step_type,
        config=config,
    )


DEFAULT_STEPS = [
    step("step-email", 4, StepType.EMAIL, template_id="custom", subject="Following up", body="<p>Hi</p>"),
    step("step-call", 1, StepType.CALL, assistant_id="assistant-1"),
    step("step-wait", 2, StepType.WAIT, duration_hours=24),
    step("step-sms", 3, StepType.SMS, body="Hi {{first_name}} from {{company}}"),
]


@pytest.fixture
def store():
    store = InMemoryCampaignStore()
    store.add_contact(Contact(
        id="contact-1",
        campaign_id="campaign-1",
        phone="+447700900123",
        first_name="Ada",
        company="Analytical Engines",
        email="ada@example.com",
    ))
    return store


@pytest.fixture
def channels():
    channels = MagicMock()
    channels.send_sms = AsyncMock()
    channels.send_email = AsyncMock()
    channels.trigger_call = AsyncMock()
    channels.dispatch = AsyncMock()
    return channels


@pytest.fixture
def engine(store, channels):
    return SequenceEngine(
        store,
        sms_sender=channels,
        email_sender=channels,
        call_trigger=channels,
        event_dispatcher=channels,
    )


def seed(store, current_step_id="step-call", steps=None, is_active=True) -> SequenceProgress:
    store.add_sequence(Sequence(
        id="sequence-1",
        campaign_id="campaign-1",
        organization_id="org-1",
        is_active=is_active,
        steps=DEFAULT_STEPS if steps is None else steps,
    ))
    return store.add_progress(SequenceProgress(
        id="progress-1",
        sequence_id="sequence-1",
        contact_id="contact-1",
        current_step_id=current_step_id,
        next_action_at=NOW - timedelta(minutes=1),
    ))


class TestRenderVariables:
    """Tests for template placeholder substitution"""

    def test_known_variables(self):
        contact = Contact(id="c", campaign_id="x", phone="+1555", first_name="Ada", last_name="Lovelace")
        assert render_variables("Hi {{first_name}} {{last_name}}", contact) == "Hi Ada Lovelace"

    def test_missing_value_renders_empty(self):
        contact = Contact(id="c", campaign_id="x", phone="+1555")
        assert render_variables("Hi {{first_name}}!", contact) == "Hi !"

    def test_unknown_placeholder_untouched(self):
        contact = Contact(id="c", campaign_id="x", phone="+1555")
        assert render_variables("Code {{promo}}", contact) == "Code {{promo}}"

    def test_empty_template(self):
        contact = Contact(id="c", campaign_id="x", phone="+1555")
        assert render_variables(None, contact) == ""


class TestStepAdvancement:
    """Tests for scheduling the next step"""

    @pytest.mark.asyncio
    async def test_wait_step_delays_next_action(self, engine, store, channels):
        seed(store)

        report = await engine.tick(NOW)

        progress = store.progress["progress-1"]
        assert report.processed == 1
        assert progress.current_step_id == "step-sms"
        assert progress.next_action_at == NOW + timedelta(seconds=86400)
        assert progress.status == ProgressStatus.ACTIVE
        channels.trigger_call.assert_awaited_once_with(
            organization_id="org-1",
            phone_number="+447700900123",
            contact_id="contact-1",
            campaign_id="campaign-1",
            assistant_id="assistant-1",
        )

    @pytest.mark.asyncio
    async def test_non_wait_step_uses_short_delay(self, engine, store, channels):
        seed(store, current_step_id="step-sms")

        await engine.tick(NOW)

        progress = store.progress["progress-1"]
        assert progress.current_step_id == "step-email"
        assert progress.next_action_at == NOW + timedelta(seconds=30)
        assert channels.send_sms.call_args.kwargs["body"] == "Hi Ada from Analytical Engines"

    @pytest.mark.asyncio
    async def test_wait_without_duration_uses_default(self, engine, store):
        seed(store, steps=[
            step("step-call", 1, StepType.CALL),
            step("step-wait", 2, StepType.WAIT),
            step("step-sms", 3, StepType.SMS, body="hello"),
        ])

        await engine.tick(NOW)

        assert store.progress["progress-1"].next_action_at == NOW + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_unknown_current_step_starts_from_first(self, engine, store, channels):
        seed(store, current_step_id="deleted-step")

        await engine.tick(NOW)

        channels.trigger_call.assert_awaited_once()
        assert store.progress["progress-1"].current_step_id == "step-sms"

    @pytest.mark.asyncio
    async def test_not_due_is_ignored(self, engine, store, channels):
        seed(store)
        store.progress["progress-1"] = store.progress["progress-1"].model_copy(
            update={"next_action_at": NOW + timedelta(minutes=5)}
        )

        report = await engine.tick(NOW)

        assert report.due == 0
        channels.trigger_call.assert_not_awaited()


class TestSequenceCompletion:
    """Tests for the last step and trailing waits"""

    @pytest.mark.asyncio
    async def test_last_step_completes_and_emits_event(self, engine, store, channels):
        seed(store, current_step_id="step-email")

        report = await engine.tick(NOW)

        progress = store.progress["progress-1"]
        assert report.completed == 1
        assert progress.status == ProgressStatus.COMPLETED
        assert progress.completed_at == NOW
        assert progress.current_step_id == "step-email"

        email = channels.send_email.call_args.kwargs
        assert email["template_id"] is None
        assert email["to_email"] == "ada@example.com"
        assert email["subject"] == "Following up"
        assert email["variables"]["first_name"] == "Ada"

        channels.dispatch.assert_awaited_once_with(
            "org-1",
            CAMPAIGN_COMPLETED_EVENT,
            {"sequenceId": "sequence-1", "contactId": "contact-1"},
        )

    @pytest.mark.asyncio
    async def test_trailing_wait_completes_after_delay(self, engine, store):
        seed(store, steps=[
            step("step-call", 1, StepType.CALL),
            step("step-wait", 2, StepType.WAIT, duration_hours=2),
        ])

        report = await engine.tick(NOW)

        progress = store.progress["progress-1"]
        assert report.completed == 1
        assert progress.status == ProgressStatus.COMPLETED
        assert progress.completed_at == NOW + timedelta(hours=2)
        assert progress.current_step_id == "step-wait"

    @pytest.mark.asyncio
    async def test_event_failure_does_not_undo_completion(self, engine, store, channels):
        channels.dispatch.side_effect = RuntimeError("webhook endpoint down")
        seed(store, current_step_id="step-email")

        report = await engine.tick(NOW)

        assert report.errors == 0
        assert store.progress["progress-1"].status == ProgressStatus.COMPLETED


class TestSequenceFailures:
    """Tests for inactive sequences, missing contacts and channel errors"""

    @pytest.mark.asyncio
    async def test_inactive_sequence_pauses_progress(self, engine, store, channels):
        seed(store, is_active=False)

        report = await engine.tick(NOW)

        assert report.paused == 1
        assert store.progress["progress-1"].status == ProgressStatus.PAUSED
        channels.trigger_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_contact_fails_progress(self, engine, store):
        seed(store)
        del store.contacts["contact-1"]

        report = await engine.tick(NOW)

        assert report.failed == 1
        assert store.progress["progress-1"].status == ProgressStatus.FAILED

    @pytest.mark.asyncio
    async def test_sequence_without_steps_completes(self, engine, store, channels):
        seed(store, steps=[])

        report = await engine.tick(NOW)
        again = await engine.tick(NOW + timedelta(minutes=1))

        progress = store.progress["progress-1"]
        assert report.completed == 1
        assert progress.status == ProgressStatus.COMPLETED
        assert progress.completed_at == NOW
        assert again.due == 0
        channels.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_channel_error_still_advances(self, engine, store, channels):
        channels.send_sms.side_effect = RuntimeError("sms gateway timeout")
        seed(store, current_step_id="step-sms")

        report = await engine.tick(NOW)

        assert report.processed == 1
        assert store.progress["progress-1"].current_step_id == "step-email"

    @pytest.mark.asyncio
    async def test_stale_snapshot_loses_race(self, engine, store):
        seed(store)
        stale = store.progress["progress-1"]

        await engine.tick(NOW)
        advanced = store.progress["progress-1"]

        store.due_sequence_progress = AsyncMock(return_value=[stale])
        report = await engine.tick(NOW)

        assert report.conflicts == 1
        assert store.progress["progress-1"] == advanced

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_failed(self, engine, store):
        seed(store)
        store.get_sequence = AsyncMock(side_effect=RuntimeError("db unavailable"))

        report = await engine.tick(NOW)

        assert report.errors == 1
        assert store.progress["progress-1"].status == ProgressStatus.FAILED
