"""
Sequence Worker
Advances multi-step sequences (default every 2 minutes)

Run as separate process:
    python -m campaign_engine.workers.sequence_worker
"""
import asyncio
from datetime import datetime

from campaign_engine.core.config import Settings
from campaign_engine.domain.services.sequence_engine import SequenceTickReport
from campaign_engine.workers.base import PeriodicWorker, configure_logging, run_worker


class SequenceWorker(PeriodicWorker):

    NAME = "sequence"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._processed = 0
        self._completed = 0
        self._failed = 0

    def interval_from(self, settings: Settings) -> float:
        return settings.sequence_tick_seconds

    async def tick(self, now: datetime) -> SequenceTickReport:
        return await self.container.sequence_engine.tick(now)

    def record(self, result: SequenceTickReport) -> None:
        self._processed += result.processed
        self._completed += result.completed
        self._failed += result.failed

    def get_stats(self) -> dict:
        stats = super().get_stats()
        stats.update({
            "steps_processed": self._processed,
            "sequences_completed": self._completed,
            "progress_failed": self._failed,
        })
        return stats


async def main():
    configure_logging()
    await run_worker(SequenceWorker())


if __name__ == "__main__":
    asyncio.run(main())
