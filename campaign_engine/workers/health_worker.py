"""
Health Worker
Checks the voice provider health (default every 5 minutes)

Run as separate process:
    python -m campaign_engine.workers.health_worker
"""
import asyncio
from datetime import datetime

from campaign_engine.core.config import Settings
from campaign_engine.domain.models.provider_health import ProviderHealthRecord
from campaign_engine.workers.base import PeriodicWorker, configure_logging, run_worker


class HealthWorker(PeriodicWorker):

    NAME = "health"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._last_status = None

    def interval_from(self, settings: Settings) -> float:
        return settings.health_interval_seconds

    async def tick(self, now: datetime) -> ProviderHealthRecord:
        return await self.container.health_monitor.check()

    def record(self, result: ProviderHealthRecord) -> None:
        self._last_status = result.status.value

    def get_stats(self) -> dict:
        stats = super().get_stats()
        stats["provider_status"] = self._last_status
        return stats


async def main():
    configure_logging()
    await run_worker(HealthWorker())


if __name__ == "__main__":
    asyncio.run(main())
