from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Union

# The scheduler API is not consistent about precision: slots come with minutes,
# the publication stamp with seconds. Anything else is a malformed payload.
SLOT_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M"
PUBLISHED_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


class ApiError(RuntimeError):
    """Upstream call failed: network, non-2xx status or a malformed payload.

    Transient by nature. The watcher reports it and tries again on the next poll.
    """


class SetupError(RuntimeError):
    """Fatal error before polling starts (bad settings, cache or credentials)."""


class LocationNotFoundError(SetupError):
    pass


def _parse_timestamp(raw: Any, fmt: str, field: str) -> dt.datetime:
    if not isinstance(raw, str):
        raise ValueError(f"{field}: expected string, got {raw!r}")
    try:
        return dt.datetime.strptime(raw, fmt)
    except ValueError as e:
        raise ValueError(f"{field}: {e}") from e


@dataclass(frozen=True)
class Location:
    """A TTP interview location."""

    id: int
    name: str

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> Location:
        return cls(id=int(raw["id"]), name=str(raw["name"]))

    def __str__(self) -> str:
        return f"(name: {self.name}, id: {self.id})"


@dataclass(frozen=True)
class Slot:
    """A single interview slot. Timestamps are minute precision, no timezone."""

    location_id: int
    start_timestamp: dt.datetime
    end_timestamp: dt.datetime

    @property
    def date(self) -> dt.date:
        return self.start_timestamp.date()

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> Slot:
        return cls(
            location_id=int(raw["locationId"]),
            start_timestamp=_parse_timestamp(raw["startTimestamp"], SLOT_TIMESTAMP_FORMAT, "startTimestamp"),
            end_timestamp=_parse_timestamp(raw["endTimestamp"], SLOT_TIMESTAMP_FORMAT, "endTimestamp"),
        )


@dataclass(frozen=True)
class SlotAvailability:
    """One slot-availability response. The first slot is the candidate of interest."""

    available_slots: tuple[Slot, ...]
    last_published_date: dt.datetime

    @property
    def first_slot(self) -> Slot | None:
        return self.available_slots[0] if self.available_slots else None

    @classmethod
    def from_json(cls, raw: dict[str, Any]) -> SlotAvailability:
        return cls(
            available_slots=tuple(Slot.from_json(s) for s in raw["availableSlots"]),
            last_published_date=_parse_timestamp(
                raw["lastPublishedDate"], PUBLISHED_TIMESTAMP_FORMAT, "lastPublishedDate"
            ),
        )


@dataclass(frozen=True)
class NoEvent:
    """Initial bus value: nothing has happened yet."""


@dataclass(frozen=True)
class ErrorEvent:
    message: str


@dataclass(frozen=True)
class SlotAvailableEvent:
    location: Location
    slot: Slot


Event = Union[NoEvent, ErrorEvent, SlotAvailableEvent]
