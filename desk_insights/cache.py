"""In-memory TTL cache with single-flight computation for raw fetches."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

LOGGER = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float


class _Flight:
    """A computation other callers can wait on."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.value: Any = None
        self.error: Optional[BaseException] = None


class TTLCache:
    """Cache values for a bounded time.

    ``get_or_compute`` ensures concurrent callers asking for the same key
    share one computation. Failed computations are not cached; every waiter
    receives the same exception.
    """

    def __init__(self, default_ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = float(default_ttl)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}
        self._flights: Dict[Hashable, _Flight] = {}

    def _lookup(self, key: Hashable) -> tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return False, None
        return True, entry.value

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            found, value = self._lookup(key)
        return value if found else default

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        lifetime = self.default_ttl if ttl is None else float(ttl)
        with self._lock:
            self._entries[key] = _Entry(value, self._clock() + lifetime)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            found, _ = self._lookup(key)
        return found

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        with self._lock:
            found, value = self._lookup(key)
            if found:
                LOGGER.debug("Cache hit for %s", key)
                return value
            flight = self._flights.get(key)
            leader = flight is None
            if leader:
                flight = self._flights[key] = _Flight()

        if not leader:
            LOGGER.debug("Waiting on in-flight computation for %s", key)
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.value

        LOGGER.debug("Cache miss for %s; computing", key)
        try:
            value = compute()
        except BaseException as exc:
            flight.error = exc
            raise
        else:
            flight.value = value
            self.set(key, value, ttl)
            return value
        finally:
            with self._lock:
                self._flights.pop(key, None)
            flight.done.set()
