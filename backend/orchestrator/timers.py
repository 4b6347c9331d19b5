"""
Cancellable channel timers.

Responsibilities:
- Run a callback after a delay as an independent asyncio task
- Replace an existing timer with the same (channel, name) key
- Cancel one timer, or all of them on shutdown

Non-responsibilities:
- NO decision about what an expiry means. A timer may fire after the
  condition it was armed for stopped holding (the cancel raced the
  expiry); callbacks must re-check their condition at fire time.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from observability.logger import log

TimerCallback = Callable[[], Awaitable[None]]


class ChannelTimers:
    """Timers keyed by (channel, name)."""

    def __init__(self) -> None:
        self._timers: dict[tuple[str, str], asyncio.Task[None]] = {}

    def arm(
        self,
        *,
        channel: str,
        name: str,
        delay_ms: int,
        callback: TimerCallback,
    ) -> None:
        """Start or replace a timer."""
        key = (channel, name)
        self.cancel(channel=channel, name=name)

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(delay_ms / 1000.0)
            except asyncio.CancelledError:
                return

            # Expired: no longer cancellable through this registry
            if self._timers.get(key) is asyncio.current_task():
                del self._timers[key]

            try:
                await callback()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log(
                    "ERROR", "TIMER", "Timer callback failed",
                    channel=channel,
                    timer=name,
                    error=f"{type(exc).__name__}: {exc}",
                )

        self._timers[key] = asyncio.create_task(_timer_task())

    def cancel(self, *, channel: str, name: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if the timer doesn't exist.
        """
        task = self._timers.pop((channel, name), None)
        if task is not None and not task.done():
            task.cancel()

    def is_armed(self, *, channel: str, name: str) -> bool:
        return (channel, name) in self._timers

    async def cancel_all(self) -> None:
        """Cancel every timer and wait for the tasks to finish."""
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
