import asyncio
import logging
from typing import Awaitable, Callable, Optional

Callback = Callable[[], Awaitable[None]]


class Timer:
    """Handle for a scheduled callback.

    Cancelling stops any further runs. A run that already started is left to
    finish, so a callback never observes a half-applied tick.
    """

    def __init__(self, delay: float, callback: Callback, repeat: bool = False):
        self.delay = delay
        self.callback = callback
        self.repeat = repeat
        self.cancelled = False
        self._running = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "Timer":
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    def cancel(self) -> None:
        self.cancelled = True
        if self._task is not None and not self._running:
            self._task.cancel()

    async def _run(self) -> None:
        while not self.cancelled:
            await asyncio.sleep(self.delay)
            if self.cancelled:
                return
            self._running = True
            try:
                await self.callback()
            except Exception:
                logging.exception(f"Timer callback {self.callback!r} failed")
            finally:
                self._running = False
            if not self.repeat:
                return


class TimerService:
    """Schedules coroutine callbacks on the running event loop."""

    def call_later(self, delay: float, callback: Callback) -> Timer:
        return Timer(delay, callback).start()

    def call_every(self, period: float, callback: Callback) -> Timer:
        return Timer(period, callback, repeat=True).start()
