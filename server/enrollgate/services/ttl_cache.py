from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable, Hashable
from concurrent.futures import Future
import logging
import threading
import time
from typing import Generic, TypeVar


logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Bounded key -> (value, expiry) map with coalescing of concurrent loads.

    When several threads ask for the same missing key at once, only the first
    runs the loader; the others wait on its Future. Loader errors reach every
    waiter and are not cached. The oldest entry is evicted once ``max_entries``
    is reached. ``ttl_seconds == 0`` disables storage but still coalesces.
    """

    def __init__(
        self,
        *,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._max_entries: int = int(max_entries)
        self._ttl_seconds: float = float(ttl_seconds)
        self._clock: Callable[[], float] = clock
        self._lock: threading.Lock = threading.Lock()
        self._entries: OrderedDict[K, tuple[V, float]] = OrderedDict()
        self._inflight: dict[K, Future[V]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: K) -> V | None:
        with self._lock:
            return self._get_locked(key)

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._set_locked(key, value)

    def invalidate(self, key: K) -> None:
        with self._lock:
            _ = self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_load(self, key: K, loader: Callable[[], V]) -> V:
        with self._lock:
            hit = self._get_locked(key)
            if hit is not None:
                return hit
            fut = self._inflight.get(key)
            owner = fut is None
            if fut is None:
                fut = Future()
                self._inflight[key] = fut

        if not owner:
            return fut.result()

        try:
            value = loader()
        except BaseException as exc:
            with self._lock:
                _ = self._inflight.pop(key, None)
            fut.set_exception(exc)
            raise

        with self._lock:
            _ = self._inflight.pop(key, None)
            if value is not None:
                self._set_locked(key, value)
        fut.set_result(value)
        return value

    def _get_locked(self, key: K) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def _set_locked(self, key: K, value: V) -> None:
        if self._ttl_seconds == 0:
            return
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("ttl cache evicted key=%r", evicted)
        self._entries[key] = (value, self._clock() + self._ttl_seconds)
