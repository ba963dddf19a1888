"""
Event queue and key-value state storage.

EventStorage is an ordered, size-bounded FIFO of pending events; the oldest
events are evicted when it overflows. StateStorage is a flat string store
used for identity, super properties and caches. Both come in a JSON-file
flavour (durable) and an in-memory flavour with the same contract.
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from mostly_good_metrics.errors import StorageError
from mostly_good_metrics.models.event import Event

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = Path.home() / ".mgm"
DEFAULT_MAX_STORED_EVENTS = 10000


class EventStorage(ABC):
    @abstractmethod
    async def store(self, event: Event) -> None:
        """Append an event, evicting the oldest beyond capacity."""

    @abstractmethod
    async def fetch(self, limit: int) -> list[Event]:
        """Return up to `limit` oldest events without removing them."""

    @abstractmethod
    async def remove(self, count: int) -> None:
        """Drop the oldest `count` events."""

    @abstractmethod
    async def count(self) -> int: ...

    @abstractmethod
    async def clear(self) -> None: ...


class StateStorage(ABC):
    @abstractmethod
    async def get_string(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set_string(self, key: str, value: Optional[str]) -> None:
        """Set a value; None deletes the key."""


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class InMemoryEventStorage(EventStorage):
    def __init__(self, max_stored_events: int = DEFAULT_MAX_STORED_EVENTS):
        self._events: list[Event] = []
        self._max_stored_events = max_stored_events

    async def store(self, event: Event) -> None:
        self._events.append(event)
        overflow = len(self._events) - self._max_stored_events
        if overflow > 0:
            del self._events[:overflow]

    async def fetch(self, limit: int) -> list[Event]:
        return self._events[:max(limit, 0)]

    async def remove(self, count: int) -> None:
        del self._events[:max(count, 0)]

    async def count(self) -> int:
        return len(self._events)

    async def clear(self) -> None:
        self._events.clear()


class FileEventStorage(EventStorage):
    """Pending events as a JSON array on disk, cached in memory after first load.

    Every mutation rewrites the file atomically. Reading, serializing and
    writing run in a worker thread, one operation at a time. A write failure
    raises StorageError; the in-memory queue keeps the change either way.
    """

    FILE_NAME = "mgm_events.json"

    def __init__(self, path: Optional[Union[str, Path]] = None, max_stored_events: int = DEFAULT_MAX_STORED_EVENTS):
        self._path = Path(path) if path else DEFAULT_STORAGE_DIR / self.FILE_NAME
        self._max_stored_events = max_stored_events
        self._events: Optional[list[Event]] = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> list[Event]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            events = [Event.from_wire(e) for e in raw]
            logger.debug(f"Loaded {len(events)} events from {self._path}")
            return events
        except FileNotFoundError:
            return []
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.error(f"Failed to load events from {self._path}, starting empty: {e}")
            return []

    def _write(self, events: list[Event]) -> None:
        try:
            _atomic_write(self._path, json.dumps([e.to_wire() for e in events]))
        except OSError as e:
            raise StorageError(f"Failed to write events to {self._path}: {e}", {"path": str(self._path)}) from e

    async def _load(self) -> list[Event]:
        if self._events is None:
            self._events = await asyncio.to_thread(self._read)
        return self._events

    async def _save(self, events: list[Event]) -> None:
        await asyncio.to_thread(self._write, list(events))

    async def store(self, event: Event) -> None:
        async with self._lock:
            events = await self._load()
            events.append(event)
            overflow = len(events) - self._max_stored_events
            if overflow > 0:
                del events[:overflow]
                logger.debug(f"Event queue full, dropped {overflow} oldest events")
            await self._save(events)

    async def fetch(self, limit: int) -> list[Event]:
        async with self._lock:
            return (await self._load())[:max(limit, 0)]

    async def remove(self, count: int) -> None:
        async with self._lock:
            events = await self._load()
            count = min(max(count, 0), len(events))
            if count:
                del events[:count]
                await self._save(events)
                logger.debug(f"Removed {count} events")

    async def count(self) -> int:
        async with self._lock:
            return len(await self._load())

    async def clear(self) -> None:
        async with self._lock:
            self._events = []
            await self._save(self._events)


class InMemoryStateStorage(StateStorage):
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._values: dict[str, str] = dict(initial or {})

    async def get_string(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set_string(self, key: str, value: Optional[str]) -> None:
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = value


class FileStateStorage(StateStorage):
    """Key-value state as a single JSON object file, read and written off the event loop."""

    FILE_NAME = "mgm_state.json"

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self._path = Path(path) if path else DEFAULT_STORAGE_DIR / self.FILE_NAME
        self._values: Optional[dict[str, str]] = None
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, str]:
        try:
            raw: Any = json.loads(self._path.read_text(encoding="utf-8"))
            return {str(k): str(v) for k, v in raw.items()}
        except FileNotFoundError:
            return {}
        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load state from {self._path}, starting empty: {e}")
            return {}

    def _write(self, values: dict[str, str]) -> None:
        try:
            _atomic_write(self._path, json.dumps(values, indent=2))
        except OSError as e:
            raise StorageError(f"Failed to write state to {self._path}: {e}", {"path": str(self._path)}) from e

    async def _load(self) -> dict[str, str]:
        if self._values is None:
            self._values = await asyncio.to_thread(self._read)
        return self._values

    async def get_string(self, key: str) -> Optional[str]:
        async with self._lock:
            return (await self._load()).get(key)

    async def set_string(self, key: str, value: Optional[str]) -> None:
        async with self._lock:
            values = await self._load()
            if value is None:
                if values.pop(key, None) is None:
                    return
            else:
                values[key] = value
            await asyncio.to_thread(self._write, dict(values))


class BestEffortStateStorage(StateStorage):
    """Wraps a StateStorage so persistence failures are logged, not raised.

    Reads that fail behave like missing keys; writes that fail leave only the
    in-memory state updated.
    """

    def __init__(self, inner: StateStorage):
        self.inner = inner

    async def get_string(self, key: str) -> Optional[str]:
        try:
            return await self.inner.get_string(key)
        except (StorageError, OSError) as e:
            logger.error(f"Failed to read state {key!r}: {e}")
            return None

    async def set_string(self, key: str, value: Optional[str]) -> None:
        try:
            await self.inner.set_string(key, value)
        except (StorageError, OSError) as e:
            logger.error(f"Failed to persist state {key!r}: {e}")
