"""
Renewal daemon.

Drives Manager passes from an APScheduler event-loop scheduler: each
pass is a one-shot date job that schedules the next one for the
duration computed by the Scheduler.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from botls.core.errors import OrderInvalid
from botls.core.manager import Manager

logger = logging.getLogger(__name__)

PASS_JOB_ID = "botls_pass"


class RenewalDaemon:
    """
    Background certificate lifecycle runner.

    ``wait()`` resolves with the process exit code: 0 after stop(),
    1 after an order was rejected by the server.
    """

    def __init__(self, manager: Manager):
        self.manager = manager
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.exit_code = 0
        self._stopped = asyncio.Event()
        self._started = False

    async def start(self) -> None:
        """Start the scheduler with an immediate first pass."""
        if self._started:
            logger.warning("Renewal daemon already started")
            return

        self._schedule_pass(0)
        self.scheduler.start()
        self._started = True
        logger.info("Renewal daemon started")

    async def stop(self, exit_code: int = 0) -> None:
        """Stop the scheduler; a pass in progress is not waited for."""
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Renewal daemon stopped")
        self.exit_code = exit_code
        self._stopped.set()

    async def wait(self) -> int:
        await self._stopped.wait()
        return self.exit_code

    def _schedule_pass(self, delay: int) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay)
        self.scheduler.add_job(
            self._run_pass,
            "date",
            run_date=run_date,
            id=PASS_JOB_ID,
            name="Certificate Lifecycle Pass",
            replace_existing=True,
            misfire_grace_time=None,
        )

    async def _run_pass(self) -> None:
        try:
            duration = await self.manager.run_pass()
        except OrderInvalid as e:
            logger.critical(f"Stopping: {e.message}. {e.suggestion}")
            await self.stop(exit_code=1)
            return
        except Exception as e:
            logger.exception(f"Error in certificate lifecycle pass: {e}")
            duration = self.manager.scheduler.next_sleep(0)

        if not self._started:
            return

        logger.info(f"Next pass in {duration} seconds")
        self._schedule_pass(duration)
