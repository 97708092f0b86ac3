"""
Periodic Worker Base
Polling loop shared by the scheduler, sequence, processing and health workers
"""
import asyncio
import logging
import signal
from datetime import datetime
from typing import Any, List, Optional

from dotenv import load_dotenv

from campaign_engine.core.config import Settings, get_settings
from campaign_engine.core.container import EngineContainer, build_container
from campaign_engine.utils.time_utils import Clock, to_iso, utcnow

load_dotenv()

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or get_settings().log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


class PeriodicWorker:
    """
    Runs `tick(now)` every `interval_seconds`.

    A failing tick is logged and retried after min(5 * n, 60) seconds;
    after MAX_CONSECUTIVE_ERRORS failures in a row the worker stops.
    """

    NAME = "worker"
    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(
        self,
        container: Optional[EngineContainer] = None,
        interval_seconds: Optional[float] = None,
        clock: Clock = utcnow
    ):
        self.container = container
        self.interval_seconds = interval_seconds
        self.running = False
        self._clock = clock
        self._owns_container = container is None
        self._closed = False

        # Stats
        self._ticks = 0
        self._tick_errors = 0
        self._last_tick_at: Optional[datetime] = None

    def interval_from(self, settings: Settings) -> float:
        raise NotImplementedError

    async def tick(self, now: datetime) -> Any:
        raise NotImplementedError

    def record(self, result: Any) -> None:
        """Fold one tick's result into the worker stats."""
        pass

    async def initialize(self) -> None:
        if self.container is None:
            logger.info(f"Initializing {self.NAME} worker...")
            self.container = await build_container()
        if self.interval_seconds is None:
            self.interval_seconds = self.interval_from(self.container.settings)

    async def run_once(self) -> Any:
        now = self._clock()
        result = await self.tick(now)
        self._ticks += 1
        self._last_tick_at = now
        self.record(result)
        return result

    async def run(self) -> None:
        await self.initialize()

        self.running = True
        consecutive_errors = 0

        logger.info(f"{self.NAME} worker started (interval={self.interval_seconds}s)")

        while self.running:
            try:
                await self.run_once()
                consecutive_errors = 0
                await asyncio.sleep(self.interval_seconds)

            except asyncio.CancelledError:
                logger.info(f"{self.NAME} worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                self._tick_errors += 1
                logger.error(f"{self.NAME} worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical(f"Too many consecutive errors, stopping {self.NAME} worker")
                    break

                await asyncio.sleep(min(5 * consecutive_errors, 60))

        await self.shutdown()

    def stop(self) -> None:
        self.running = False

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.running = False

        if self._owns_container and self.container is not None:
            await self.container.close()

        logger.info(f"{self.NAME} worker shutdown complete. Stats: {self.get_stats()}")

    def get_stats(self) -> dict:
        return {
            "worker": self.NAME,
            "running": self.running,
            "ticks": self._ticks,
            "tick_errors": self._tick_errors,
            "last_tick_at": to_iso(self._last_tick_at),
        }


def _install_signal_handlers(workers: List[PeriodicWorker]) -> None:
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        for worker in workers:
            worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


async def run_worker(worker: PeriodicWorker) -> None:
    """Entry point for running one worker as a separate process."""
    _install_signal_handlers([worker])
    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    finally:
        await worker.shutdown()
