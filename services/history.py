"""Live history subscriptions over the realtime database."""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime
from functools import lru_cache
from threading import Lock
from typing import Any, Callable, List, Mapping, Optional

from models.records import HistoryQuery, HistoryState, Reading
from services.normalizer import (
    ErrorEvent,
    SnapshotEvent,
    StreamEvent,
    build_reading,
    reduce_history,
)
from settings import get_settings
from storage.mock_realtime_db import (
    InvalidPathError,
    ListenerHandle,
    MockRealtimeDatabase,
    StoreError,
    build_default_database,
    split_path,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[HistoryState], None]

DATABASE_NOT_INITIALIZED = "Database not initialized"


class SnapshotStream:
    """Cancellable stream of store events for one path.

    Once :meth:`close` returns, no further event reaches ``sink``, even one the
    store was already dispatching.
    """

    def __init__(
        self,
        database: MockRealtimeDatabase,
        path: str,
        sink: Callable[[StreamEvent], None],
    ) -> None:
        self.database = database
        self.path = path
        self._sink = sink
        self._handle: Optional[ListenerHandle] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def live(self) -> bool:
        """True while the store still delivers events; errors end a listener."""
        return not self._closed and self._handle is not None and self._handle.active

    def open(self) -> None:
        self._handle = self.database.subscribe(
            self.path,
            on_snapshot=lambda snapshot: self._deliver(SnapshotEvent(snapshot)),
            on_error=lambda error: self._deliver(ErrorEvent(error)),
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _deliver(self, event: StreamEvent) -> None:
        if self._closed:
            logger.debug("Dropping event for closed stream", extra={"path": self.path})
            return
        self._sink(event)


class HistorySubscriber:
    """Keeps a normalized, window-filtered view of one device's history."""

    def __init__(
        self,
        database: MockRealtimeDatabase,
        root_prefix: str,
        default_device_id: str = "RPi001",
        query: Optional[HistoryQuery] = None,
    ) -> None:
        self.database = database
        self.root_prefix = root_prefix.strip("/")
        self.default_device_id = default_device_id
        self.query = query or HistoryQuery(device_id=default_device_id)
        self._state = HistoryState()
        self._stream: Optional[SnapshotStream] = None
        self._listeners: List[StateListener] = []
        self._lock = Lock()

    @property
    def state(self) -> HistoryState:
        return self._state

    @property
    def readings(self) -> tuple[Reading, ...]:
        return self._state.readings

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    @property
    def active(self) -> bool:
        return self._stream is not None and self._stream.live

    def history_path(self, timestamp_key: Optional[str] = None) -> str:
        path = f"{self.root_prefix}/{self.query.device_id}/History"
        if timestamp_key is not None:
            path = f"{path}/{timestamp_key}"
        return path

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(
        self,
        device_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> HistoryState:
        query = HistoryQuery(
            device_id=device_id or self.default_device_id,
            start_date=start_date,
            end_date=end_date,
        )
        if self.active and query == self.query:
            return self._state

        self.unsubscribe()
        self.query = query
        self._publish(HistoryState(readings=self._state.readings, loading=True, error=None))

        if self.database.closed:
            logger.error(DATABASE_NOT_INITIALIZED, extra={"device_id": query.device_id})
            self._publish(
                HistoryState(readings=self._state.readings, loading=False, error=DATABASE_NOT_INITIALIZED)
            )
            return self._state

        path = self.history_path()
        logger.info("Subscribing to device history", extra={"device_id": query.device_id, "path": path})
        stream = SnapshotStream(self.database, path, sink=lambda event: self._on_event(stream, event))
        self._stream = stream
        try:
            stream.open()
        except StoreError as exc:
            self._on_event(stream, ErrorEvent(exc))
        return self._state

    def unsubscribe(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None and not stream.closed:
            stream.close()
            logger.info(
                "Unsubscribed from device history",
                extra={"device_id": self.query.device_id, "path": stream.path},
            )

    async def get_reading(self, timestamp_key: str) -> Optional[Reading]:
        """Fetch a single reading; ``None`` when absent, failed or out of window."""
        query = self.query
        try:
            if len(split_path(timestamp_key)) != 1:
                raise InvalidPathError(f"Invalid history key {timestamp_key!r}.")
            snapshot = await self.database.fetch_once(self.history_path(timestamp_key))
        except StoreError as exc:
            logger.error(
                "Error fetching specific reading",
                extra={"device_id": query.device_id, "timestamp_key": timestamp_key, "reason": str(exc)},
            )
            return None

        if not snapshot.exists:
            return None

        reading = build_reading(timestamp_key, snapshot.value)
        if not query.contains(reading.timestamp):
            return None
        return reading

    def _on_event(self, stream: SnapshotStream, event: StreamEvent) -> None:
        with self._lock:
            if stream is not self._stream:
                return
            next_state = reduce_history(self._state, event, self.query)

        if isinstance(event, ErrorEvent):
            logger.error(
                next_state.error,
                extra={"device_id": self.query.device_id, "reason": event.error.message},
            )
        else:
            logger.debug(
                "Processed historical readings",
                extra={"device_id": self.query.device_id, "reading_count": len(next_state.readings)},
            )
        self._publish(next_state)

    def _publish(self, state: HistoryState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)


class HistoryService:
    """Shares live subscribers between callers viewing the same device window."""

    def __init__(
        self,
        database: MockRealtimeDatabase,
        root_prefix: str,
        default_device_id: str = "RPi001",
        max_watchers: int = 32,
    ) -> None:
        self.database = database
        self.root_prefix = root_prefix.strip("/")
        self.default_device_id = default_device_id
        self.max_watchers = max_watchers
        self._watchers: "OrderedDict[HistoryQuery, HistorySubscriber]" = OrderedDict()
        self._lock = Lock()

    def query_for(
        self,
        device_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> HistoryQuery:
        return HistoryQuery(
            device_id=device_id or self.default_device_id,
            start_date=start_date,
            end_date=end_date,
        )

    def watch(self, query: HistoryQuery) -> HistorySubscriber:
        evicted: List[HistorySubscriber] = []
        with self._lock:
            subscriber = self._watchers.get(query)
            if subscriber is not None:
                self._watchers.move_to_end(query)
            else:
                subscriber = HistorySubscriber(
                    self.database, self.root_prefix, default_device_id=self.default_device_id
                )
                self._watchers[query] = subscriber
                while len(self._watchers) > self.max_watchers:
                    _, oldest = self._watchers.popitem(last=False)
                    evicted.append(oldest)

        for oldest in evicted:
            oldest.unsubscribe()
        # re-establishes a subscription that failed or was torn down
        subscriber.subscribe(query.device_id, query.start_date, query.end_date)
        return subscriber

    def current(
        self,
        device_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> HistoryState:
        return self.watch(self.query_for(device_id, start_date, end_date)).state

    async def lookup(
        self,
        device_id: Optional[str],
        timestamp_key: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Optional[Reading]:
        """One-shot fetch through an unsubscribed reader; the registry is untouched."""
        reader = HistorySubscriber(
            self.database,
            self.root_prefix,
            default_device_id=self.default_device_id,
            query=self.query_for(device_id, start_date, end_date),
        )
        return await reader.get_reading(timestamp_key)

    def record(self, device_id: str, timestamp_key: str, payload: Mapping[str, Any]) -> None:
        """Write one sample into the device's history subtree."""
        path = f"{self.root_prefix}/{device_id}/History/{timestamp_key}"
        self.database.set(path, dict(payload))
        logger.info(
            "Recorded history sample",
            extra={"device_id": device_id, "timestamp_key": timestamp_key},
        )

    def watcher_count(self) -> int:
        with self._lock:
            return len(self._watchers)

    def shutdown(self) -> None:
        with self._lock:
            watchers = list(self._watchers.values())
            self._watchers.clear()
        for subscriber in watchers:
            subscriber.unsubscribe()


@lru_cache
def build_default_history_service() -> HistoryService:
    """Factory that wires the history service with the default database."""
    settings = get_settings()
    return HistoryService(
        database=build_default_database(),
        root_prefix=settings.history_root_prefix,
        default_device_id=settings.default_device_id,
        max_watchers=settings.history_max_watchers,
    )
