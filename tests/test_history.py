"""Tests for live history subscriptions and point lookups."""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timezone
from typing import List

import pytest

from models.records import HistoryQuery, HistoryState
from services.history import HistoryService, HistorySubscriber, SnapshotStream
from storage.mock_realtime_db import MockRealtimeDatabase, Snapshot

PREFIX = "Clients/test-client/devices"
UTC = timezone.utc


def _history_path(device_id: str = "RPi001") -> str:
    return f"{PREFIX}/{device_id}/History"


def _sample(**overrides: object) -> dict:
    record = {"BOD": 5, "COD": 10, "Flow": 1, "PH": 7, "TSS": 2}
    record.update(overrides)
    return record


@pytest.fixture()
def database() -> MockRealtimeDatabase:
    return MockRealtimeDatabase("test")


@pytest.fixture()
def subscriber(database: MockRealtimeDatabase) -> HistorySubscriber:
    sub = HistorySubscriber(database, PREFIX)
    yield sub
    sub.unsubscribe()


def _collect(sub: HistorySubscriber) -> List[HistoryState]:
    states: List[HistoryState] = []
    sub.add_listener(states.append)
    return states


def test_subscription_publishes_normalized_readings(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    database.set(_history_path(), {"2024-01-01_10-00-00": _sample()})

    state = subscriber.subscribe()

    assert state.loading is False
    assert state.error is None
    assert len(state.readings) == 1
    reading = state.readings[0]
    assert reading.id == "2024-01-01_10-00-00"
    assert reading.raw_timestamp == "2024-01-01 10:00:00"
    assert dict(reading.measurements) == {"BOD": 5, "COD": 10, "Flow": 1, "PH": 7, "TSS": 2}


def test_string_channel_value_becomes_zero(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    database.set(_history_path(), {"2024-01-01_10-00-00": _sample(BOD="n/a")})

    state = subscriber.subscribe()

    assert state.readings[0].channel("BOD") == 0
    assert state.readings[0].channel("COD") == 10


def test_empty_subtree_publishes_empty_sequence(subscriber: HistorySubscriber) -> None:
    state = subscriber.subscribe()

    assert state.readings == ()
    assert state.loading is False
    assert state.error is None


def test_permission_denied_sets_error(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    database.deny(_history_path(), "permission-denied")

    state = subscriber.subscribe()

    assert state.error == "Error fetching historical data: permission-denied"
    assert state.loading is False


def test_transport_failure_keeps_last_known_readings(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    database.set(_history_path(), {"2024-01-01_10-00-00": _sample()})
    before = subscriber.subscribe().readings

    database.fail(PREFIX, "network down")

    assert subscriber.readings == before
    assert subscriber.error == "Error fetching historical data: network down"
    assert subscriber.loading is False


def test_subscription_publishes_loading_then_data_then_updates(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    states = _collect(subscriber)
    database.set(_history_path(), {"2024-01-01_00-00-00": _sample(BOD=1)})

    subscriber.subscribe()
    database.set(f"{_history_path()}/2024-01-02_00-00-00", _sample(BOD=2))

    assert [state.loading for state in states] == [True, False, False]
    assert [r.channel("BOD") for r in states[-1].readings] == [2.0, 1.0]


def test_window_filters_published_readings(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    database.set(
        _history_path(),
        {
            "2024-01-01_00-00-00": _sample(),
            "2024-01-05_00-00-00": _sample(),
            "2024-01-09_00-00-00": _sample(),
        },
    )
    start = datetime(2024, 1, 2, tzinfo=UTC)
    end = datetime(2024, 1, 8, tzinfo=UTC)

    state = subscriber.subscribe(start_date=start, end_date=end)

    assert [reading.id for reading in state.readings] == ["2024-01-05_00-00-00"]
    assert all(start <= reading.timestamp <= end for reading in state.readings)


def test_published_sequence_is_sorted_with_finite_channels(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    tree = {
        "2024-02-01_08-00-00": _sample(TSS="x"),
        "2024-01-15_08-00-00": _sample(),
        "2024-03-01_08-00-00": _sample(Timestamp="2023-12-31T00:00:00Z"),
        "2024-02-10_08-00-00": {"PH": True},
    }
    database.set(_history_path(), tree)

    readings = subscriber.subscribe().readings

    assert len(readings) == len(tree)
    assert {reading.id for reading in readings} == set(tree)
    assert all(a.timestamp >= b.timestamp for a, b in zip(readings, readings[1:]))
    assert readings[-1].id == "2024-03-01_08-00-00"
    for reading in readings:
        assert all(math.isfinite(value) for value in reading.measurements.values())


def test_unsubscribe_stops_publication_and_is_idempotent(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    subscriber.subscribe()
    states = _collect(subscriber)

    subscriber.unsubscribe()
    subscriber.unsubscribe()
    database.set(f"{_history_path()}/2024-01-02_00-00-00", _sample())

    assert states == []
    assert subscriber.readings == ()
    assert subscriber.active is False
    assert database._listeners == []


def test_closed_stream_drops_in_flight_events(database: MockRealtimeDatabase) -> None:
    delivered: list = []
    stream = SnapshotStream(database, _history_path(), sink=delivered.append)
    stream.open()
    late_callback = stream._handle.on_snapshot  # type: ignore[union-attr]

    stream.close()
    stream.close()
    late_callback(Snapshot(path=_history_path(), value={"k": _sample()}))

    assert len(delivered) == 1
    assert stream.closed


def test_resubscribe_to_other_device_tears_down_previous(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    subscriber.subscribe("A")
    subscriber.subscribe("B")
    states = _collect(subscriber)

    database.set(f"{_history_path('A')}/2024-01-01_00-00-00", _sample())

    assert states == []
    assert [handle.path for handle in database._listeners] == [_history_path("B")]
    assert subscriber.query.device_id == "B"


def test_resubscribe_with_identical_arguments_is_a_no_op(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    database.set(_history_path("A"), {"2024-01-01_00-00-00": _sample()})
    first = subscriber.subscribe("A")
    states = _collect(subscriber)

    second = subscriber.subscribe("A")

    assert second is first
    assert states == []
    assert len(database._listeners) == 1


def test_identical_subscriptions_publish_identical_sequences(
    database: MockRealtimeDatabase,
) -> None:
    database.set(
        _history_path(),
        {"2024-01-01_00-00-00": _sample(), "2024-01-02_00-00-00": _sample(COD="bad")},
    )
    window = dict(start_date=datetime(2023, 1, 1), end_date=datetime(2025, 1, 1))

    first = HistorySubscriber(database, PREFIX)
    second = HistorySubscriber(database, PREFIX)
    try:
        assert first.subscribe("RPi001", **window).readings == second.subscribe("RPi001", **window).readings
    finally:
        first.unsubscribe()
        second.unsubscribe()


def test_missing_device_defaults_to_fallback_identifier(subscriber: HistorySubscriber) -> None:
    subscriber.subscribe()

    assert subscriber.query.device_id == "RPi001"
    assert subscriber.history_path() == _history_path("RPi001")


def test_closed_database_reports_not_initialized(database: MockRealtimeDatabase) -> None:
    database.close()
    subscriber = HistorySubscriber(database, PREFIX)

    state = subscriber.subscribe()

    assert state.error == "Database not initialized"
    assert state.loading is False
    assert asyncio.run(subscriber.get_reading("2024-01-01_10-00-00")) is None


def test_get_reading_returns_reading_built_like_subscription(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    database.set(_history_path(), {"2024-01-01_10-00-00": _sample(BOD="n/a")})
    subscribed = subscriber.subscribe().readings[0]

    looked_up = asyncio.run(subscriber.get_reading("2024-01-01_10-00-00"))

    assert looked_up == subscribed


def test_get_reading_returns_none_for_absent_key(subscriber: HistorySubscriber) -> None:
    subscriber.subscribe()

    assert asyncio.run(subscriber.get_reading("2024-01-01_10-00-00")) is None


def test_get_reading_returns_none_outside_window(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    database.set(_history_path(), {"2024-01-01_10-00-00": _sample()})
    subscriber.subscribe(start_date=datetime(2025, 1, 1, tzinfo=UTC))

    assert asyncio.run(subscriber.get_reading("2024-01-01_10-00-00")) is None


@pytest.mark.parametrize("key", ["", "a/b", "bad.key"])
def test_get_reading_returns_none_for_invalid_keys(subscriber: HistorySubscriber, key: str) -> None:
    assert asyncio.run(subscriber.get_reading(key)) is None


def test_get_reading_returns_none_when_fetch_fails(
    database: MockRealtimeDatabase, subscriber: HistorySubscriber
) -> None:
    database.set(_history_path(), {"2024-01-01_10-00-00": _sample()})
    database.deny(PREFIX)

    assert asyncio.run(subscriber.get_reading("2024-01-01_10-00-00")) is None


def test_history_service_shares_and_evicts_watchers(database: MockRealtimeDatabase) -> None:
    service = HistoryService(database, PREFIX, max_watchers=2)
    first = service.watch(HistoryQuery("A"))

    assert service.watch(HistoryQuery("A")) is first
    service.watch(HistoryQuery("B"))
    service.watch(HistoryQuery("C"))

    assert service.watcher_count() == 2
    assert first.active is False

    service.shutdown()
    assert service.watcher_count() == 0
    assert database._listeners == []


def test_history_service_records_and_serves_readings(database: MockRealtimeDatabase) -> None:
    service = HistoryService(database, PREFIX)
    assert service.current("A").readings == ()

    service.record("A", "2024-01-01_10-00-00", _sample(PH=6.5))

    state = service.current("A")
    assert [reading.channel("PH") for reading in state.readings] == [6.5]
    reading = asyncio.run(service.lookup("A", "2024-01-01_10-00-00"))
    assert reading is not None
    assert reading.timestamp == datetime(2024, 1, 1, 10, tzinfo=UTC)
    service.shutdown()


def test_history_service_retries_failed_subscription(database: MockRealtimeDatabase) -> None:
    service = HistoryService(database, PREFIX)
    watcher = service.watch(HistoryQuery("A"))
    database.fail(PREFIX, "network down")
    assert watcher.error == "Error fetching historical data: network down"
    assert watcher.active is False

    database.set(_history_path("A"), {"2024-01-01_10-00-00": _sample()})

    state = service.current("A")
    assert state.error is None
    assert len(state.readings) == 1
    service.shutdown()


def test_lookups_do_not_displace_live_watchers(database: MockRealtimeDatabase) -> None:
    service = HistoryService(database, PREFIX, max_watchers=1)
    live = service.watch(HistoryQuery("A"))
    database.set(_history_path("A"), {"2024-01-05_10-00-00": _sample()})

    for day in range(1, 4):
        start = datetime(2024, 1, day, tzinfo=UTC)
        reading = asyncio.run(service.lookup("A", "2024-01-05_10-00-00", start_date=start))
        assert reading is not None
    outside = asyncio.run(
        service.lookup("A", "2024-01-05_10-00-00", end_date=datetime(2024, 1, 2, tzinfo=UTC))
    )

    assert outside is None
    assert service.watcher_count() == 1
    assert live.active is True
    assert len(database._listeners) == 1
    service.shutdown()
