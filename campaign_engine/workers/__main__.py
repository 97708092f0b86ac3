"""
Run every worker in one process sharing one engine container:
    python -m campaign_engine.workers
"""
import asyncio
import logging

from campaign_engine.core.container import build_container
from campaign_engine.workers.base import _install_signal_handlers, configure_logging
from campaign_engine.workers.campaign_worker import CampaignWorker
from campaign_engine.workers.health_worker import HealthWorker
from campaign_engine.workers.processing_worker import ProcessingWorker
from campaign_engine.workers.sequence_worker import SequenceWorker

logger = logging.getLogger(__name__)


async def main():
    configure_logging()
    container = await build_container()

    workers = [
        HealthWorker(container),
        CampaignWorker(container),
        SequenceWorker(container),
        ProcessingWorker(container),
    ]
    _install_signal_handlers(workers)

    try:
        await asyncio.gather(*(worker.run() for worker in workers))
    finally:
        for worker in workers:
            logger.info(f"Final stats: {worker.get_stats()}")
        await container.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
