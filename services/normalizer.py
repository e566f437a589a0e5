"""Pure transformation of raw history trees into sorted readings."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Union

from models.records import (
    CHANNELS,
    TIMESTAMP_FIELD,
    HistoryQuery,
    HistoryState,
    Reading,
    TimestampResolution,
    as_utc,
)
from storage.mock_realtime_db import Snapshot, StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotEvent:
    snapshot: Snapshot


@dataclass(frozen=True)
class ErrorEvent:
    error: StoreError


StreamEvent = Union[SnapshotEvent, ErrorEvent]


def coerce_channel(value: Any) -> float:
    """Return ``value`` as a finite float, or ``0.0`` for anything else."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    number = float(value)
    return number if math.isfinite(number) else 0.0


def derive_timestamp(key: str) -> str:
    """Turn a key such as ``2024-01-01_10-00-00`` into ``2024-01-01 10:00:00``."""
    date_part, sep, clock_part = key.replace("_", " ").partition(" ")
    return f"{date_part}{sep}{clock_part.replace('-', ':')}"


def parse_timestamp(value: Union[str, int, float]) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into an aware UTC datetime."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValueError("Timestamp out of range") from exc

    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    return as_utc(parsed)


def resolve_timestamp(raw: Union[str, int, float], now: Optional[datetime] = None) -> TimestampResolution:
    text = raw if isinstance(raw, str) else str(raw)
    try:
        return TimestampResolution(raw=text, instant=parse_timestamp(raw), parsed=True)
    except ValueError:
        fallback = now or datetime.now(timezone.utc)
        logger.warning(
            "Unparseable timestamp, using current time",
            extra={"raw_timestamp": text},
        )
        return TimestampResolution(raw=text, instant=fallback, parsed=False)


def _explicit_timestamp(value: Any) -> Optional[Union[str, int, float]]:
    # empty strings, zero and NaN fall through to the key
    if isinstance(value, str):
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value if value and not math.isnan(value) else None
    return None


def build_reading(key: str, record: Any, now: Optional[datetime] = None) -> Reading:
    """Build a :class:`Reading` from one child of a history subtree.

    Shared by the live subscription and the point lookup so both paths coerce
    channels and resolve timestamps identically.
    """
    if not isinstance(record, Mapping):
        logger.debug(
            "History record is not an object",
            extra={"timestamp_key": key, "reason": type(record).__name__},
        )
        record = {}

    explicit = _explicit_timestamp(record.get(TIMESTAMP_FIELD))
    resolution = resolve_timestamp(derive_timestamp(key) if explicit is None else explicit, now=now)

    return Reading(
        id=key,
        measurements={name: coerce_channel(record.get(name)) for name in CHANNELS},
        raw_timestamp=resolution.raw,
        timestamp=resolution.instant,
        timestamp_fallback=not resolution.parsed,
    )


def sort_newest_first(readings: Iterable[Reading]) -> List[Reading]:
    return sorted(readings, key=lambda reading: reading.timestamp, reverse=True)


def normalize_history(tree: Any, query: HistoryQuery) -> List[Reading]:
    """Convert a ``History`` subtree into window-filtered readings, newest first."""
    if not isinstance(tree, Mapping):
        return []

    now = datetime.now(timezone.utc)
    readings: List[Reading] = []
    for key, record in tree.items():
        if record is None:
            continue
        reading = build_reading(str(key), record, now=now)
        if query.contains(reading.timestamp):
            readings.append(reading)

    return sort_newest_first(readings)


def reduce_history(state: HistoryState, event: StreamEvent, query: HistoryQuery) -> HistoryState:
    """Compute the next published state for one stream event."""
    if isinstance(event, ErrorEvent):
        return HistoryState(
            readings=state.readings,
            loading=False,
            error=f"Error fetching historical data: {event.error.message}",
        )

    if not event.snapshot.exists:
        return HistoryState(readings=(), loading=False, error=None)

    readings = normalize_history(event.snapshot.value, query)
    return HistoryState(readings=tuple(readings), loading=False, error=None)
