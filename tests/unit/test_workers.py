"""
Unit Tests for the Periodic Workers
Tests tick accounting, error backoff and container ownership
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from campaign_engine.core.config import Settings
from campaign_engine.domain.models.provider_health import HealthStatus, ProviderHealthRecord
from campaign_engine.domain.services.campaign_scheduler import TickReport
from campaign_engine.domain.services.processing_queue import QueueRunReport
from campaign_engine.domain.services.sequence_engine import SequenceTickReport
from campaign_engine.workers import CampaignWorker, HealthWorker, ProcessingWorker, SequenceWorker

NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def container():
    container = MagicMock()
    container.settings = Settings()
    container.close = AsyncMock()
    return container


class TestCampaignWorker:
    """Tests for the scheduler worker"""

    @pytest.mark.asyncio
    async def test_run_once_records_stats(self, container):
        container.scheduler.tick = AsyncMock(side_effect=[
            TickReport(campaigns_seen=2, dispatched=2, retries_reset=1),
            TickReport(skipped_reason="provider_down"),
        ])
        worker = CampaignWorker(container=container, clock=lambda: NOW)

        await worker.run_once()
        await worker.run_once()

        container.scheduler.tick.assert_awaited_with(NOW)
        stats = worker.get_stats()
        assert stats["worker"] == "campaign"
        assert stats["ticks"] == 2
        assert stats["calls_dispatched"] == 2
        assert stats["retries_reset"] == 1
        assert stats["skipped_ticks"] == 1
        assert stats["last_tick_at"] is not None

    @pytest.mark.asyncio
    async def test_interval_from_settings(self, container):
        worker = CampaignWorker(container=container)
        await worker.initialize()
        assert worker.interval_seconds == 5

    @pytest.mark.asyncio
    async def test_explicit_interval_kept(self, container):
        worker = CampaignWorker(container=container, interval_seconds=0.5)
        await worker.initialize()
        assert worker.interval_seconds == 0.5


class TestRunLoop:
    """Tests for the polling loop"""

    @pytest.mark.asyncio
    async def test_stops_after_consecutive_errors(self, container):
        container.scheduler.tick = AsyncMock(side_effect=RuntimeError("store down"))
        worker = CampaignWorker(container=container, interval_seconds=1)

        with patch("campaign_engine.workers.base.asyncio.sleep", new=AsyncMock()) as sleep:
            await worker.run()

        assert container.scheduler.tick.await_count == CampaignWorker.MAX_CONSECUTIVE_ERRORS
        assert worker.get_stats()["tick_errors"] == CampaignWorker.MAX_CONSECUTIVE_ERRORS
        backoffs = [c.args[0] for c in sleep.await_args_list]
        assert backoffs[:3] == [5, 10, 15]
        assert max(backoffs) == 45
        assert worker.running is False

    @pytest.mark.asyncio
    async def test_stop_ends_loop(self, container):
        worker = CampaignWorker(container=container, interval_seconds=1)

        async def tick(now):
            worker.stop()
            return TickReport()

        container.scheduler.tick = tick

        with patch("campaign_engine.workers.base.asyncio.sleep", new=AsyncMock()):
            await worker.run()

        assert worker.get_stats()["ticks"] == 1

    @pytest.mark.asyncio
    async def test_injected_container_not_closed(self, container):
        worker = CampaignWorker(container=container, interval_seconds=1)
        await worker.shutdown()
        await worker.shutdown()
        container.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_owned_container_closed_once(self, container):
        worker = CampaignWorker(interval_seconds=1)

        with patch("campaign_engine.workers.base.build_container", new=AsyncMock(return_value=container)):
            await worker.initialize()

        await worker.shutdown()
        await worker.shutdown()
        container.close.assert_awaited_once()


class TestOtherWorkers:
    """Tests for the sequence, processing and health workers"""

    @pytest.mark.asyncio
    async def test_sequence_worker(self, container):
        container.sequence_engine.tick = AsyncMock(
            return_value=SequenceTickReport(due=3, processed=3, completed=1, failed=1)
        )
        worker = SequenceWorker(container=container, clock=lambda: NOW)

        await worker.run_once()

        stats = worker.get_stats()
        assert stats["steps_processed"] == 3
        assert stats["sequences_completed"] == 1
        assert stats["progress_failed"] == 1

    @pytest.mark.asyncio
    async def test_processing_worker(self, container):
        container.processing_queue.process_pending = AsyncMock(
            return_value=QueueRunReport(processed=2, successful=1, failed=1)
        )
        worker = ProcessingWorker(container=container)
        await worker.initialize()

        await worker.run_once()

        assert worker.interval_seconds == 60
        assert worker.get_stats()["jobs_successful"] == 1
        assert worker.get_stats()["jobs_failed"] == 1

    @pytest.mark.asyncio
    async def test_health_worker(self, container):
        container.health_monitor.check = AsyncMock(return_value=ProviderHealthRecord(
            provider="vapi", status=HealthStatus.DEGRADED, response_time_ms=6000, checked_at=NOW
        ))
        worker = HealthWorker(container=container)
        await worker.initialize()

        await worker.run_once()

        assert worker.interval_seconds == 300
        assert worker.get_stats()["provider_status"] == "degraded"
