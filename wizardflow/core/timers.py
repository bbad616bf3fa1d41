from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)


class Debouncer:
    """Last-write-wins delayed call.

    Each ``schedule()`` replaces the pending arguments and restarts the
    timer. Without a running event loop the call is made immediately.
    """

    def __init__(self, delay: float, callback: Callable[..., Any], *, sleep=asyncio.sleep):
        self.delay = delay
        self._callback = callback
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._args: Optional[tuple] = None

    @property
    def pending(self) -> bool:
        return self._args is not None

    def schedule(self, *args) -> None:
        self._args = args
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._fire()
            return
        self._cancel_task()
        self._task = loop.create_task(self._run())

    async def _run(self) -> None:
        await self._sleep(self.delay)
        self._task = None
        try:
            self._fire()
        except Exception:
            # unawaited task
            log.exception("Debounced call failed")

    def _fire(self) -> None:
        if self._args is None:
            return
        args, self._args = self._args, None
        self._callback(*args)

    def flush(self) -> None:
        """Run the pending call now, if any."""
        self._cancel_task()
        self._fire()

    def cancel(self) -> None:
        self._cancel_task()
        self._args = None

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
