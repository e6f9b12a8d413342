"""Latest-value broadcast between the watcher and its consumers.

Only the most recent event is kept. Publishing is synchronous and never waits
for subscribers; a slow subscriber simply skips the values it did not get to
see and wakes up to whatever is current.
"""

from __future__ import annotations

import asyncio
import logging

from ttpwatch.domain import Event, NoEvent

logger = logging.getLogger(__name__)


class LatestValueBus:
    def __init__(self, initial: Event | None = None) -> None:
        self._value: Event = initial if initial is not None else NoEvent()
        self._version = 0
        self._closed = False
        # Replaced on every publish; waiters hold a reference to the one they started on.
        self._wakeup = asyncio.Event()

    @property
    def version(self) -> int:
        return self._version

    @property
    def closed(self) -> bool:
        return self._closed

    def current(self) -> Event:
        return self._value

    def publish(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError("Cannot publish to a closed bus")
        self._value = event
        self._version += 1
        self._wake_all()
        logger.debug("Published %s (version=%d)", type(event).__name__, self._version)

    def close(self) -> None:
        """Wake every subscriber and make their next changed() return False."""
        if self._closed:
            return
        self._closed = True
        self._wake_all()

    def subscribe(self) -> Subscription:
        return Subscription(self)

    async def wait(self) -> None:
        """Suspend until the next publish or close."""
        await self._wakeup.wait()

    def _wake_all(self) -> None:
        wakeup, self._wakeup = self._wakeup, asyncio.Event()
        wakeup.set()


class Subscription:
    """Per-consumer handle. Tracks the last bus version this consumer observed."""

    def __init__(self, bus: LatestValueBus) -> None:
        self._bus = bus
        self._seen = bus.version

    @property
    def has_changed(self) -> bool:
        return self._bus.version != self._seen

    def current(self) -> Event:
        return self._bus.current()

    async def changed(self) -> bool:
        """Wait for a value newer than the last one observed.

        Returns False once the bus is closed and the last value has been observed.
        Marks the newest version as observed, so values published while this
        consumer was busy are collapsed into one wakeup.
        """
        while not self.has_changed:
            if self._bus.closed:
                return False
            await self._bus.wait()
        self._seen = self._bus.version
        return True
