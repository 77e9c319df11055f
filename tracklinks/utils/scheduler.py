"""Cancellable waits for background workers."""

from __future__ import annotations

import asyncio
import contextlib


class StopSignal:
    """A stop flag whose waits end early once the flag is raised.

    Workers use :meth:`sleep` for throttling and backoff so a stop request
    interrupts the wait instead of waiting for it to elapse.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def sleep(self, delay_ms: float) -> bool:
        """Sleep for ``delay_ms``; return ``True`` if interrupted by a stop."""

        if self._event.is_set():
            return True
        if delay_ms <= 0:
            await asyncio.sleep(0)
            return self._event.is_set()

        sleep_task = asyncio.create_task(asyncio.sleep(delay_ms / 1000.0))
        wait_task = asyncio.create_task(self._event.wait())
        done, pending = await asyncio.wait(
            {sleep_task, wait_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in done:
            with contextlib.suppress(asyncio.CancelledError):
                task.result()
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        return self._event.is_set()


__all__ = ["StopSignal"]
