"""Background retention sweeps.

PeriodicSweep runs a synchronous sweep callable on a fixed interval as an
asyncio task. Owners start it explicitly and stop it on shutdown; nothing
runs at import time.
"""

import asyncio
from typing import Callable, Optional

import structlog

log = structlog.get_logger(__name__)


class PeriodicSweep:
    """Cancellable periodic task wrapping ``sweep()``.

    Usage:
        sweeper = PeriodicSweep("snapshots", manager.sweep, interval_seconds=3600)
        sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(self, name: str, sweep: Callable[[], int], interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._sweep = sweep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop (idempotent)."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"sweep:{self.name}"
        )
        log.debug("periodic_sweep_started", sweep=self.name, interval=self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.debug("periodic_sweep_stopped", sweep=self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                removed = self._sweep()
            except Exception as e:
                log.error(
                    "periodic_sweep_failed",
                    sweep=self.name,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                continue
            if removed:
                log.info("periodic_sweep_completed", sweep=self.name, removed=removed)
