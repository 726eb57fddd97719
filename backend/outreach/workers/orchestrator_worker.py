"""
Orchestrator Worker
Background process running the scheduling tick loop

Run as separate process:
    python -m outreach.workers.orchestrator_worker
"""
import asyncio
import logging
import signal
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from outreach.core.config import get_settings
from outreach.core.engine import Engine, build_engine
from outreach.core.logging import configure_logging
from outreach.core.validation import validate_backends_on_startup
from outreach.domain.services.orchestrator import TickReport

logger = logging.getLogger(__name__)


class OrchestratorWorker:
    """
    Runs Orchestrator.tick on a fixed interval.

    Responsibilities:
    - Evaluate due candidates of active campaigns every tick
    - Back off on consecutive tick failures and stop after too many
    - Drain in-flight dispatches on shutdown
    """

    DEFAULT_TICK_INTERVAL = 30
    DEFAULT_MAX_CONSECUTIVE_ERRORS = 10

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine
        self._owns_engine = engine is None
        self.running = False
        self._shutdown_done = False

        self.tick_interval: float = self.DEFAULT_TICK_INTERVAL
        self.max_consecutive_errors: int = self.DEFAULT_MAX_CONSECUTIVE_ERRORS

        # Stats
        self._ticks = 0
        self._tick_errors = 0
        self._evaluated = 0
        self._last_report: Optional[TickReport] = None

    async def initialize(self) -> None:
        """Build the engine (unless one was injected) and read loop settings."""
        logger.info("Initializing Orchestrator Worker...")

        if self.engine is None:
            settings = get_settings()
            validate_backends_on_startup(settings, strict=settings.environment == "production")
            self.engine = await build_engine(settings)

        config = self.engine.config
        self.tick_interval = config.get("orchestrator.tick_interval_seconds", self.DEFAULT_TICK_INTERVAL)
        self.max_consecutive_errors = config.get(
            "orchestrator.max_consecutive_errors", self.DEFAULT_MAX_CONSECUTIVE_ERRORS
        )
        logger.info(f"Orchestrator Worker initialized (tick every {self.tick_interval}s)")

    async def run_once(self) -> TickReport:
        """Run a single tick and update stats."""
        report = await self.engine.orchestrator.tick()
        self._ticks += 1
        self._evaluated += report.evaluated
        self._last_report = report
        return report

    async def run(self) -> None:
        """
        Main worker loop.

        Each iteration runs one tick, then sleeps for the tick interval.
        """
        await self.initialize()

        self.running = True
        consecutive_errors = 0

        logger.info("Orchestrator Worker started")

        while self.running:
            try:
                report = await self.run_once()
                if report.errors:
                    logger.warning(f"Tick finished with {report.errors} evaluation errors")
                consecutive_errors = 0
                await asyncio.sleep(self.tick_interval)

            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                self._tick_errors += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.max_consecutive_errors:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

                await asyncio.sleep(min(5 * consecutive_errors, 60))

        await self.shutdown()

    async def shutdown(self) -> None:
        """Graceful shutdown. Waits for in-flight dispatches."""
        self.running = False
        if self._shutdown_done:
            return
        self._shutdown_done = True
        logger.info("Shutting down Orchestrator Worker...")

        if self.engine is not None:
            if self._owns_engine:
                await self.engine.close()
            else:
                await self.engine.orchestrator.drain()

        logger.info(
            f"Orchestrator Worker shutdown complete. "
            f"Ticks: {self._ticks}, Evaluated: {self._evaluated}, Errors: {self._tick_errors}"
        )

    def get_stats(self) -> dict:
        """Get worker statistics."""
        return {
            "running": self.running,
            "ticks": self._ticks,
            "tick_errors": self._tick_errors,
            "evaluated": self._evaluated,
            "inflight_dispatches": self.engine.orchestrator.inflight_count if self.engine else 0,
            "last_tick": self._last_report.to_dict() if self._last_report else None,
        }


async def main():
    """Entry point for running the orchestrator worker as a separate process."""
    configure_logging(get_settings().log_level)
    worker = OrchestratorWorker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    finally:
        await worker.shutdown()


def run_main() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run_main()
