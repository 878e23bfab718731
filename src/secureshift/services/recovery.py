"""Recovery Scheduler — runs the background sweeps on a fixed interval.

Each tick runs the rating window sweep and then the payment recovery sweep.
A failing sweep is logged and the loop carries on with the next tick.

Usage:
    scheduler = RecoveryScheduler(container.rating_window, container.payments, 300.0)
    scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from secureshift.logging_config import get_logger

if TYPE_CHECKING:
    from secureshift.services.payment_release import PaymentReleaseCoordinator
    from secureshift.services.rating_window import RatingWindowMonitor

logger = get_logger(__name__)


class RecoveryScheduler:
    """Periodic driver for ``RatingWindowMonitor.sweep`` and ``release_pending``."""

    def __init__(
        self,
        rating_window: RatingWindowMonitor,
        payments: PaymentReleaseCoordinator,
        interval_seconds: float,
    ) -> None:
        self._rating_window = rating_window
        self._payments = payments
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        """Run both sweeps once; errors are logged, never raised."""
        try:
            await self._rating_window.sweep()
        except Exception:
            logger.exception("recovery.rating_sweep_failed")
        try:
            await self._payments.release_pending()
        except Exception:
            logger.exception("recovery.payment_sweep_failed")
        self.ticks += 1

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="secureshift-recovery")
        logger.info("recovery.started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("recovery.stopped", ticks=self.ticks)

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval)
