from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Tuple

from settings import get_settings

logger = logging.getLogger(__name__)

_FORBIDDEN_KEY_CHARS = frozenset(".#$[]")


class StoreError(Exception):
    """Failure reported by the realtime store."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidPathError(StoreError):
    pass


class StoreClosedError(StoreError):
    pass


@dataclass(frozen=True)
class Snapshot:
    """Value found at a path at a point in time."""

    path: str
    value: Any

    @property
    def exists(self) -> bool:
        return self.value is not None


SnapshotCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[StoreError], None]


class ListenerHandle:
    """Cancellable registration returned by :meth:`MockRealtimeDatabase.subscribe`."""

    def __init__(
        self,
        database: "MockRealtimeDatabase",
        segments: Tuple[str, ...],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> None:
        self._database = database
        self.segments = segments
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.active = True

    @property
    def path(self) -> str:
        return "/".join(self.segments)

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._database._remove_listener(self)


def split_path(path: str) -> Tuple[str, ...]:
    segments = tuple(part for part in path.strip("/").split("/"))
    if segments == ("",):
        return ()
    for segment in segments:
        if not segment:
            raise InvalidPathError(f"Path {path!r} contains an empty segment.")
        if _FORBIDDEN_KEY_CHARS.intersection(segment):
            raise InvalidPathError(
                f"Path {path!r} contains one of the forbidden characters '.#$[]'."
            )
    return segments


def _is_prefix(prefix: Tuple[str, ...], segments: Tuple[str, ...]) -> bool:
    return segments[: len(prefix)] == prefix


def _normalize(value: Any) -> Any:
    """Drop empty containers and ``None`` leaves the way the hosted store does."""
    if isinstance(value, dict):
        cleaned = {}
        for key, child in value.items():
            key = str(key)
            if not key or "/" in key or _FORBIDDEN_KEY_CHARS.intersection(key):
                raise InvalidPathError(f"Invalid key {key!r}.")
            normalized = _normalize(child)
            if normalized is not None:
                cleaned[key] = normalized
        return cleaned or None
    if isinstance(value, (list, tuple)):
        return _normalize({str(index): child for index, child in enumerate(value)})
    return copy.deepcopy(value)


class MockRealtimeDatabase:
    """In-process stand-in for a hosted realtime key-value tree.

    Listeners fire once with the current value when registered and again after
    every write that touches their path, synchronously and in write order.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self.persistence_path = persistence_path
        self._root: Dict[str, Any] = {}
        self._listeners: List[ListenerHandle] = []
        self._denied: Dict[Tuple[str, ...], str] = {}
        self._closed = False
        self._lock = RLock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, path: str) -> Snapshot:
        segments = split_path(path)
        with self._lock:
            self._ensure_open()
            self._check_access(segments)
            return Snapshot(path="/".join(segments), value=self._read(segments))

    async def fetch_once(self, path: str) -> Snapshot:
        """One-shot read of ``path``."""
        return self.get(path)

    def set(self, path: str, value: Any) -> None:
        segments = split_path(path)
        with self._lock:
            self._ensure_open()
            self._write(segments, _normalize(value))
            self._persist()
            self._dispatch(segments)

    def update(self, path: str, values: Dict[str, Any]) -> None:
        segments = split_path(path)
        with self._lock:
            self._ensure_open()
            for key, value in values.items():
                self._write(segments + split_path(key), _normalize(value))
            self._persist()
            self._dispatch(segments)

    def remove(self, path: str) -> None:
        self.set(path, None)

    def subscribe(
        self,
        path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> ListenerHandle:
        segments = split_path(path)
        with self._lock:
            self._ensure_open()
            handle = ListenerHandle(self, segments, on_snapshot, on_error)
            denial = self._denial_for(segments)
            if denial is not None:
                handle.active = False
                on_error(StoreError(denial))
                return handle
            self._listeners.append(handle)
            on_snapshot(Snapshot(path=handle.path, value=self._read(segments)))
            return handle

    def deny(self, path: str, message: str = "permission-denied") -> None:
        """Reject reads at and below ``path``; live listeners there are cancelled."""
        segments = split_path(path)
        with self._lock:
            self._denied[segments] = message
        self.fail(path, message)

    def allow(self, path: str) -> None:
        with self._lock:
            self._denied.pop(split_path(path), None)

    def fail(self, path: str, message: str) -> None:
        """Report a transport failure to every listener at or below ``path``."""
        segments = split_path(path)
        with self._lock:
            affected = [
                handle for handle in self._listeners if _is_prefix(segments, handle.segments)
            ]
            for handle in affected:
                handle.cancel()
            for handle in affected:
                handle.on_error(StoreError(message))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            for handle in list(self._listeners):
                handle.cancel()
            self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError(f"Realtime database {self.name!r} is closed.")

    def _denial_for(self, segments: Tuple[str, ...]) -> Optional[str]:
        for prefix, message in self._denied.items():
            if _is_prefix(prefix, segments):
                return message
        return None

    def _check_access(self, segments: Tuple[str, ...]) -> None:
        denial = self._denial_for(segments)
        if denial is not None:
            raise StoreError(denial)

    def _read(self, segments: Tuple[str, ...]) -> Any:
        node: Any = self._root
        for segment in segments:
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return copy.deepcopy(node) if node != {} else None

    def _write(self, segments: Tuple[str, ...], value: Any) -> None:
        if not segments:
            self._root = value if isinstance(value, dict) else {}
            return

        parents: List[Tuple[Dict[str, Any], str]] = []
        node = self._root
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[segment] = child
            parents.append((node, segment))
            node = child

        leaf = segments[-1]
        if value is None:
            node.pop(leaf, None)
        else:
            node[leaf] = value

        # prune parents left empty by a removal
        for parent, key in reversed(parents):
            if parent[key]:
                break
            del parent[key]

    def _dispatch(self, changed: Tuple[str, ...]) -> None:
        for handle in list(self._listeners):
            if not handle.active:
                continue
            if _is_prefix(changed, handle.segments) or _is_prefix(handle.segments, changed):
                handle.on_snapshot(Snapshot(path=handle.path, value=self._read(handle.segments)))

    def _remove_listener(self, handle: ListenerHandle) -> None:
        with self._lock:
            if handle in self._listeners:
                self._listeners.remove(handle)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        self.persistence_path.write_text(json.dumps(self._root, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Ignoring unreadable realtime database file",
                extra={"path": str(self.persistence_path)},
            )
            data = {}

        self._root = data if isinstance(data, dict) else {}


@lru_cache
def build_default_database(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockRealtimeDatabase:
    settings = get_settings()
    db_path = settings.realtime_persistence_path if path is None else path
    persistence = Path(db_path) if db_path else None
    return MockRealtimeDatabase(name=name or "realtime", persistence_path=persistence)
