from __future__ import annotations

import asyncio
import datetime as dt
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from ttpwatch.bus import LatestValueBus, Subscription
from ttpwatch.domain import (
    ErrorEvent,
    Event,
    Location,
    LocationNotFoundError,
    SetupError,
    SlotAvailability,
    SlotAvailableEvent,
)

logger = logging.getLogger(__name__)


class SlotSource(Protocol):
    async def get_all_open_locations(self) -> list[Location]: ...

    async def get_slot_availability(self, location: Location) -> SlotAvailability: ...


def load_locations_from_file(path: str | Path) -> list[Location]:
    """Read a location cache: a JSON array of {"id": int, "name": str}."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SetupError(f"Could not read location cache {path}: {e}") from e

    if not isinstance(raw, list):
        raise SetupError(f"Location cache {path} must contain a JSON array")
    try:
        return [Location.from_json(item) for item in raw]
    except (KeyError, TypeError, ValueError) as e:
        raise SetupError(f"Malformed location in cache {path}: {e!r}") from e


def resolve_location(locations: Sequence[Location], fragment: str) -> Location:
    """First location whose name contains the fragment wins."""
    matches = [loc for loc in locations if fragment in loc.name]
    if not matches:
        raise LocationNotFoundError(f"Could not find location matching {fragment}")
    if len(matches) > 1:
        logger.warning(
            "%d locations match %r, using %s (also matched: %s)",
            len(matches),
            fragment,
            matches[0],
            ", ".join(str(m) for m in matches[1:]),
        )
    return matches[0]


@dataclass
class _Watermark:
    # Both start at the minimum so the first availability always qualifies.
    last_published: dt.datetime = dt.datetime.min
    last_slot_date: dt.date = dt.date.min


class Watcher:
    """Polls one location and publishes events to a LatestValueBus.

    A slot is reported only when both the publication stamp and the first slot's
    date moved since the last report. Upstream bumps the stamp without changing
    slots, and a new slot can show up under an old stamp; either alone is noise.
    """

    def __init__(
        self,
        client: SlotSource,
        *,
        locations: Sequence[Location],
        target: str,
        poll_period_seconds: float = 30,
        bus: LatestValueBus | None = None,
    ) -> None:
        self._client = client
        self._bus = bus or LatestValueBus()
        self._poll_period_seconds = poll_period_seconds
        self._target = resolve_location(locations, target)
        self._watermark = _Watermark()
        logger.info("Watching %s every %ss", self._target, poll_period_seconds)

    @classmethod
    async def from_api(
        cls,
        client: SlotSource,
        *,
        target: str,
        poll_period_seconds: float = 30,
        bus: LatestValueBus | None = None,
    ) -> Watcher:
        """Fetch the live location list, then build the watcher. Any failure is fatal."""
        try:
            locations = await client.get_all_open_locations()
        except Exception as e:
            raise SetupError(f"Could not fetch locations: {e}") from e
        logger.info("Fetched %d open locations", len(locations))
        return cls(
            client,
            locations=locations,
            target=target,
            poll_period_seconds=poll_period_seconds,
            bus=bus,
        )

    @property
    def target(self) -> Location:
        return self._target

    @property
    def bus(self) -> LatestValueBus:
        return self._bus

    def subscribe(self) -> Subscription:
        return self._bus.subscribe()

    async def poll_once(self) -> Event | None:
        """Run one fetch-evaluate step. Returns the published event, if any."""
        try:
            availability = await self._client.get_slot_availability(self._target)
        except Exception as e:
            # Watermark untouched, a transient error must not hide the next real slot.
            event: Event = ErrorEvent(str(e) or type(e).__name__)
            self._bus.publish(event)
            return event

        if availability.last_published_date == self._watermark.last_published:
            return None

        slot = availability.first_slot
        if slot is None:
            logger.debug("Published %s with no slots", availability.last_published_date)
            return None

        if slot.date == self._watermark.last_slot_date:
            logger.debug("First slot date %s already reported", slot.date)
            return None

        event = SlotAvailableEvent(location=self._target, slot=slot)
        self._bus.publish(event)
        self._watermark.last_published = availability.last_published_date
        self._watermark.last_slot_date = slot.date
        return event

    async def watch(self) -> None:
        """Poll forever. The period is the gap between requests, not a fixed rate."""
        while True:
            await self.poll_once()
            await asyncio.sleep(self._poll_period_seconds)
