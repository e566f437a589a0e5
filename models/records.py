"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Optional, Tuple

CHANNELS: Tuple[str, ...] = ("BOD", "COD", "Flow", "PH", "TSS")
"""Measurement channels reported by every treatment device."""

TIMESTAMP_FIELD = "Timestamp"


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class TimestampResolution:
    """Outcome of resolving a raw timestamp string into an instant.

    ``parsed`` is ``False`` when ``instant`` is the "now" fallback used for an
    unparseable value.
    """

    raw: str
    instant: datetime
    parsed: bool


@dataclass(frozen=True, slots=True)
class Reading:
    """A single timestamped sample from a device's history subtree."""

    id: str
    measurements: Mapping[str, float]
    raw_timestamp: str
    timestamp: datetime
    timestamp_fallback: bool = False

    def channel(self, name: str) -> float:
        return self.measurements[name]


@dataclass(frozen=True, slots=True)
class HistoryQuery:
    """Device and optional inclusive time window for a history view."""

    device_id: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.start_date is not None:
            object.__setattr__(self, "start_date", as_utc(self.start_date))
        if self.end_date is not None:
            object.__setattr__(self, "end_date", as_utc(self.end_date))

    def contains(self, instant: datetime) -> bool:
        if self.start_date is not None and instant < self.start_date:
            return False
        if self.end_date is not None and instant > self.end_date:
            return False
        return True


@dataclass(frozen=True, slots=True)
class HistoryState:
    """Published view of a subscription: readings plus loading/error flags."""

    readings: Tuple[Reading, ...] = field(default_factory=tuple)
    loading: bool = True
    error: Optional[str] = None
