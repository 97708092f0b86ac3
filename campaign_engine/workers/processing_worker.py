"""
Processing Worker
Polls the AI processing queue (default every 60s)

Run as separate process:
    python -m campaign_engine.workers.processing_worker
"""
import asyncio
from datetime import datetime

from campaign_engine.core.config import Settings
from campaign_engine.domain.services.processing_queue import QueueRunReport
from campaign_engine.workers.base import PeriodicWorker, configure_logging, run_worker


class ProcessingWorker(PeriodicWorker):

    NAME = "processing"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._successful = 0
        self._failed = 0

    def interval_from(self, settings: Settings) -> float:
        return settings.queue_poll_seconds

    async def tick(self, now: datetime) -> QueueRunReport:
        return await self.container.processing_queue.process_pending()

    def record(self, result: QueueRunReport) -> None:
        self._successful += result.successful
        self._failed += result.failed

    def get_stats(self) -> dict:
        stats = super().get_stats()
        stats.update({
            "jobs_successful": self._successful,
            "jobs_failed": self._failed,
        })
        return stats


async def main():
    configure_logging()
    await run_worker(ProcessingWorker())


if __name__ == "__main__":
    asyncio.run(main())
