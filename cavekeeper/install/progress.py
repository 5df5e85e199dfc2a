"""Download progress stream for a single consumer.

Intermediate progress values are advisory: when the consumer falls behind,
unread values are replaced by the newest one. The terminal event (success
or failure) is always delivered, after any pending progress value.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass


@dataclass(frozen=True)
class ProgressEvent:
    """One progress update.

    Attributes:
        progress: Fraction complete in [0, 1]
        done: True for the terminal event
        error: Failure description on a failed terminal event
    """

    progress: float
    done: bool = False
    error: str | None = None


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class ProgressChannel:
    """Coalescing progress channel with a guaranteed terminal event."""

    def __init__(self) -> None:
        self._pending: ProgressEvent | None = None
        self._terminal: ProgressEvent | None = None
        self._last = 0.0
        self._closed = False
        self._finished = False
        self._wakeup = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, fraction: float) -> None:
        """Publish an intermediate value. Ignored once the channel is closed."""
        if self._closed:
            return
        self._last = _clamp(fraction)
        self._pending = ProgressEvent(progress=self._last)
        self._wakeup.set()

    def close(self, error: str | None = None) -> None:
        """Publish the terminal event. Only the first call has an effect."""
        if self._closed:
            return
        self._closed = True
        progress = self._last if error else 1.0
        self._terminal = ProgressEvent(progress=progress, done=True, error=error)
        self._wakeup.set()

    def __aiter__(self) -> ProgressChannel:
        return self

    async def __anext__(self) -> ProgressEvent:
        while True:
            if self._pending is not None:
                event, self._pending = self._pending, None
                return event
            if self._terminal is not None:
                event, self._terminal = self._terminal, None
                self._finished = True
                return event
            if self._finished:
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()
