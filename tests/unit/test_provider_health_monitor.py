"""
Unit Tests for the Provider Health Monitor
Tests health check classification, failure hysteresis and the outage circuit breaker
"""
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from campaign_engine.core.exceptions import HealthCheckError
from campaign_engine.domain.models.campaign import PROVIDER_OUTAGE, Campaign, CampaignStatus
from campaign_engine.domain.models.provider_health import HealthStatus
from campaign_engine.domain.services.provider_health_monitor import ProviderHealthMonitor
from campaign_engine.infrastructure.storage.memory_store import InMemoryCampaignStore

NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return InMemoryCampaignStore()


@pytest.fixture
def voice_client():
    client = MagicMock()
    client.name = "vapi"
    client.ping = AsyncMock(return_value=None)
    return client


@pytest.fixture
def monitor(store, voice_client):
    return ProviderHealthMonitor(store, voice_client, clock=lambda: NOW, timer=lambda: 0.0)


def failing(voice_client):
    voice_client.ping.side_effect = HealthCheckError("HTTP 503: Service Unavailable", status_code=503)


def healthy(voice_client):
    voice_client.ping.side_effect = None


class TestCheckOnce:
    """Tests for single-check classification"""

    @pytest.mark.asyncio
    async def test_fast_response_is_healthy(self, monitor):
        result = await monitor.check_once()
        assert result.status == HealthStatus.HEALTHY
        assert result.error_message is None

    @pytest.mark.asyncio
    async def test_slow_response_is_degraded(self, store, voice_client):
        ticks = iter([100.0, 106.0])
        monitor = ProviderHealthMonitor(store, voice_client, timer=lambda: next(ticks))

        result = await monitor.check_once()

        assert result.status == HealthStatus.DEGRADED
        assert result.response_time_ms == 6000
        assert result.error_message == "Slow response: 6000ms"

    @pytest.mark.asyncio
    async def test_error_is_down(self, monitor, voice_client):
        failing(voice_client)

        result = await monitor.check_once()

        assert result.status == HealthStatus.DOWN
        assert "HTTP 503" in result.error_message

    @pytest.mark.asyncio
    async def test_timeout_is_down(self, monitor, voice_client):
        voice_client.ping.side_effect = asyncio.TimeoutError()

        result = await monitor.check_once()

        assert result.status == HealthStatus.DOWN
        assert result.error_message == "Request timeout (10s)"


class TestHysteresis:
    """Tests for consecutive-failure handling"""

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self, monitor, voice_client):
        failing(voice_client)
        first = await monitor.check()
        second = await monitor.check()
        healthy(voice_client)
        third = await monitor.check()

        assert [r.status for r in (first, second, third)] == [
            HealthStatus.DEGRADED,
            HealthStatus.DEGRADED,
            HealthStatus.HEALTHY,
        ]
        assert [r.consecutive_failures for r in (first, second, third)] == [1, 2, 0]

    @pytest.mark.asyncio
    async def test_third_failure_is_down(self, monitor, voice_client, store):
        failing(voice_client)
        statuses = [(await monitor.check()).status for _ in range(4)]

        assert statuses == [
            HealthStatus.DEGRADED,
            HealthStatus.DEGRADED,
            HealthStatus.DOWN,
            HealthStatus.DOWN,
        ]
        assert (await store.latest_health("vapi")).consecutive_failures == 4

    @pytest.mark.asyncio
    async def test_records_are_appended(self, monitor, store):
        await monitor.check()
        await monitor.check()
        assert len(store.health) == 2


class TestCircuitBreaker:
    """Tests for outage pause and recovery resume"""

    def _seed(self, store):
        store.add_campaign(Campaign(id="running-a", organization_id="org-a", status=CampaignStatus.RUNNING))
        store.add_campaign(Campaign(id="running-b", organization_id="org-a", status=CampaignStatus.RUNNING))
        store.add_campaign(Campaign(id="running-c", organization_id="org-b", status=CampaignStatus.RUNNING))
        store.add_campaign(Campaign(id="user-paused", organization_id="org-a", status=CampaignStatus.PAUSED))
        store.add_campaign(Campaign(id="draft", organization_id="org-a", status=CampaignStatus.DRAFT))

    async def _go_down(self, monitor, voice_client):
        failing(voice_client)
        for _ in range(3):
            await monitor.check()

    @pytest.mark.asyncio
    async def test_outage_pauses_running_campaigns(self, monitor, voice_client, store):
        self._seed(store)

        await self._go_down(monitor, voice_client)

        for cid in ("running-a", "running-b", "running-c"):
            assert store.campaigns[cid].status == CampaignStatus.PAUSED
            assert store.campaigns[cid].paused_reason == PROVIDER_OUTAGE
        assert store.campaigns["user-paused"].paused_reason is None
        assert store.campaigns["draft"].status == CampaignStatus.DRAFT

    @pytest.mark.asyncio
    async def test_outage_notifies_each_organization_once(self, monitor, voice_client, store):
        self._seed(store)

        await self._go_down(monitor, voice_client)

        by_org = {n.organization_id: n for n in store.notifications}
        assert len(store.notifications) == 2
        assert by_org["org-a"].type == "provider_outage"
        assert by_org["org-a"].title == "Voice Provider Outage"
        assert by_org["org-a"].message.startswith(
            "Voice provider is experiencing an outage. 2 campaign(s) have been paused"
        )
        assert "1 campaign(s)" in by_org["org-b"].message

    @pytest.mark.asyncio
    async def test_staying_down_does_not_repause(self, monitor, voice_client, store):
        self._seed(store)
        await self._go_down(monitor, voice_client)

        await monitor.check()

        assert len(store.notifications) == 2

    @pytest.mark.asyncio
    async def test_recovery_resumes_only_outage_paused(self, monitor, voice_client, store):
        self._seed(store)
        await self._go_down(monitor, voice_client)
        store.notifications.clear()

        healthy(voice_client)
        record = await monitor.check()

        assert record.status == HealthStatus.HEALTHY
        for cid in ("running-a", "running-b", "running-c"):
            assert store.campaigns[cid].status == CampaignStatus.RUNNING
            assert store.campaigns[cid].paused_reason is None
        assert store.campaigns["user-paused"].status == CampaignStatus.PAUSED

        by_org = {n.organization_id: n for n in store.notifications}
        assert by_org["org-a"].type == "provider_recovered"
        assert by_org["org-a"].message == (
            "Voice provider is back online. 2 campaign(s) have been automatically resumed."
        )

    @pytest.mark.asyncio
    async def test_degraded_does_not_resume(self, monitor, voice_client, store):
        self._seed(store)
        await self._go_down(monitor, voice_client)

        ticks = iter([0.0, 7.0])
        monitor._timer = lambda: next(ticks)
        healthy(voice_client)
        record = await monitor.check()

        assert record.status == HealthStatus.DEGRADED
        assert store.campaigns["running-a"].paused_reason == PROVIDER_OUTAGE

    @pytest.mark.asyncio
    async def test_store_failure_does_not_raise(self, monitor, store):
        store.insert_health_record = AsyncMock(side_effect=RuntimeError("db unavailable"))

        record = await monitor.check()

        assert record.status == HealthStatus.HEALTHY


class TestCurrentStatus:
    """Tests for the status summary"""

    @pytest.mark.asyncio
    async def test_unknown_without_records(self, monitor):
        status = await monitor.current_status()
        assert status["status"] == "unknown"
        assert status["provider"] == "vapi"

    @pytest.mark.asyncio
    async def test_latest_record(self, monitor):
        await monitor.check()

        status = await monitor.current_status()

        assert status["status"] == "healthy"
        assert status["last_checked"] == NOW.isoformat()
        assert status["consecutive_failures"] == 0
