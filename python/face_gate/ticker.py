"""Cancellable periodic task driving the landmark sampling loop."""

import asyncio
import logging

logger = logging.getLogger(__name__)


def _current_task():
    try:
        return asyncio.current_task()
    except RuntimeError:
        # called from outside the event loop thread
        return None


class Ticker:
    """Runs an async callback every `interval` seconds.

    Ticks never overlap: the next tick is scheduled only after the previous
    callback has returned, so a slow detection delays sampling instead of
    stacking work.
    """

    def __init__(self, interval):
        self.interval = float(interval)
        self.ticks = 0
        self._task = None
        self._stopped = True

    @property
    def running(self):
        return self._task is not None and not self._task.done() and not self._stopped

    def start(self, callback):
        if self.running:
            raise RuntimeError("ticker already running")
        self._stopped = False
        self.ticks = 0
        self._task = asyncio.get_running_loop().create_task(self._loop(callback))

    async def _loop(self, callback):
        loop = asyncio.get_running_loop()
        while not self._stopped:
            started = loop.time()
            self.ticks += 1
            await callback()
            if self._stopped:
                break
            await asyncio.sleep(max(0.0, self.interval - (loop.time() - started)))

    def stop(self):
        """Stop synchronously; a tick in flight is cancelled at its next await."""
        self._stopped = True
        task = self._task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def wait(self):
        """Block until the loop has finished, however it finished."""
        task = self._task
        if task is None:
            return
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.error("Sampling loop died", exc_info=task.exception())
