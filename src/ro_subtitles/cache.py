from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

log = logging.getLogger("ro_subtitles.cache")

Clock = Callable[[], float]


class TTLCache:
    """Small in-memory LRU cache with per-entry TTL semantics.

    ``default_ttl=None`` keeps entries until they are evicted. When
    ``max_size`` is set, the least recently used entry is dropped on set().
    """

    def __init__(
        self,
        default_ttl: Optional[float] = 600.0,
        max_size: Optional[int] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._clock = clock
        self._lock = threading.Lock()
        self._store: "OrderedDict[str, Tuple[Optional[float], Any]]" = OrderedDict()

    def _now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            expiry, value = item
            if expiry is not None and expiry <= self._now():
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl_value = self._default_ttl if ttl is None else ttl
        expiry = None if ttl_value is None else self._now() + ttl_value
        with self._lock:
            self._store[key] = (expiry, value)
            self._store.move_to_end(key)
            if self._max_size is not None:
                while len(self._store) > self._max_size:
                    evicted, _ = self._store.popitem(last=False)
                    log.debug("evicted %s", evicted)

    def get_or_create(self, key: str, factory: Callable[[], Any]) -> Any:
        """Atomic check-then-insert; ``factory`` runs at most once per miss."""
        with self._lock:
            item = self._store.get(key)
            if item is not None and (item[0] is None or item[0] > self._now()):
                self._store.move_to_end(key)
                return item[1]
        value = factory()
        with self._lock:
            item = self._store.get(key)
            if item is not None and (item[0] is None or item[0] > self._now()):
                self._store.move_to_end(key)
                return item[1]
            expiry = None if self._default_ttl is None else self._now() + self._default_ttl
            self._store[key] = (expiry, value)
            if self._max_size is not None:
                while len(self._store) > self._max_size:
                    self._store.popitem(last=False)
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class SingleFlight:
    """Collapse concurrent calls for the same key into one shared task.

    The in-flight entry is registered without yielding to the event loop, so
    two coroutines can never both start work for one key. It is removed by a
    done-callback, which also runs on failure and cancellation. Waiters are
    shielded: a caller going away does not cancel the shared work.
    """

    def __init__(self) -> None:
        self._inflight: Dict[str, "asyncio.Task[Any]"] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    def __contains__(self, key: str) -> bool:
        return key in self._inflight

    def join(self, key: str) -> Optional["asyncio.Task[Any]"]:
        return self._inflight.get(key)

    def start(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Tuple["asyncio.Task[Any]", bool]:
        """Return ``(task, is_owner)`` for ``key``, creating the task when absent."""
        task = self._inflight.get(key)
        if task is not None:
            return task, False
        task = asyncio.ensure_future(producer())
        self._inflight[key] = task
        task.add_done_callback(lambda done, k=key: self._release(k, done))
        return task, True

    def _release(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def do(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        task, _ = self.start(key, producer)
        return await asyncio.shield(task)


__all__ = ["TTLCache", "SingleFlight"]
