"""
Campaign Worker
Runs the campaign scheduler tick (default every 5s)

Run as separate process:
    python -m campaign_engine.workers.campaign_worker
"""
import asyncio
from datetime import datetime

from campaign_engine.core.config import Settings
from campaign_engine.domain.services.campaign_scheduler import TickReport
from campaign_engine.workers.base import PeriodicWorker, configure_logging, run_worker


class CampaignWorker(PeriodicWorker):
    """Dispatches pending contacts and resets retry-eligible calls."""

    NAME = "campaign"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._dispatched = 0
        self._retries_reset = 0
        self._campaign_errors = 0
        self._skipped_ticks = 0

    def interval_from(self, settings: Settings) -> float:
        return settings.scheduler_tick_seconds

    async def tick(self, now: datetime) -> TickReport:
        return await self.container.scheduler.tick(now)

    def record(self, result: TickReport) -> None:
        self._dispatched += result.dispatched
        self._retries_reset += result.retries_reset
        self._campaign_errors += result.errors
        if result.skipped_reason:
            self._skipped_ticks += 1

    def get_stats(self) -> dict:
        stats = super().get_stats()
        stats.update({
            "calls_dispatched": self._dispatched,
            "retries_reset": self._retries_reset,
            "campaign_errors": self._campaign_errors,
            "skipped_ticks": self._skipped_ticks,
        })
        return stats


async def main():
    configure_logging()
    await run_worker(CampaignWorker())


if __name__ == "__main__":
    asyncio.run(main())
