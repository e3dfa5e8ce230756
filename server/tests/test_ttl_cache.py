from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import threading
from threading import Barrier

import pytest

from enrollgate.services.ttl_cache import TTLCache


class _Clock:
    def __init__(self) -> None:
        self.now: float = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache = TTLCache[str, int](max_entries=8, ttl_seconds=10, clock=clock)

    cache.set("a", 1)
    clock.now = 9.9
    assert cache.get("a") == 1
    clock.now = 10.0
    assert cache.get("a") is None
    assert len(cache) == 0


def test_oldest_entry_is_evicted_when_full() -> None:
    cache = TTLCache[str, int](max_entries=2, ttl_seconds=60)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_invalidate_and_clear() -> None:
    cache = TTLCache[str, int](max_entries=4, ttl_seconds=60)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    assert cache.get("a") is None
    cache.clear()
    assert len(cache) == 0


def test_zero_ttl_stores_nothing() -> None:
    cache = TTLCache[str, int](max_entries=4, ttl_seconds=0)
    assert cache.get_or_load("a", lambda: 1) == 1
    assert len(cache) == 0


def test_rejects_bad_limits() -> None:
    with pytest.raises(ValueError):
        _ = TTLCache[str, int](max_entries=0, ttl_seconds=1)
    with pytest.raises(ValueError):
        _ = TTLCache[str, int](max_entries=1, ttl_seconds=-1)


def test_get_or_load_coalesces_concurrent_loads() -> None:
    cache = TTLCache[str, str](max_entries=4, ttl_seconds=60)
    n = 8
    barrier = Barrier(n)
    release = threading.Event()
    calls: list[int] = []

    def _loader() -> str:
        calls.append(1)
        assert release.wait(timeout=10)
        return "value"

    def _get(_i: int) -> str:
        _ = barrier.wait(timeout=10)
        return cache.get_or_load("k", _loader)

    with ThreadPoolExecutor(max_workers=n) as ex:
        futures = [ex.submit(_get, i) for i in range(n)]
        # Let every thread reach get_or_load before the single loader returns.
        threading.Timer(0.2, release.set).start()
        results = [f.result(timeout=10) for f in futures]

    assert results == ["value"] * n
    assert len(calls) == 1
    assert cache.get("k") == "value"


def test_loader_error_reaches_waiters_and_is_not_cached() -> None:
    cache = TTLCache[str, str](max_entries=4, ttl_seconds=60)
    n = 4
    barrier = Barrier(n)
    release = threading.Event()

    def _loader() -> str:
        assert release.wait(timeout=10)
        raise RuntimeError("lookup failed")

    def _get(_i: int) -> str:
        _ = barrier.wait(timeout=10)
        return cache.get_or_load("k", _loader)

    with ThreadPoolExecutor(max_workers=n) as ex:
        futures = [ex.submit(_get, i) for i in range(n)]
        threading.Timer(0.2, release.set).start()
        errors = []
        for f in futures:
            with pytest.raises(RuntimeError, match="lookup failed"):
                _ = f.result(timeout=10)
            errors.append(1)

    assert len(errors) == n
    assert cache.get("k") is None
    assert cache.get_or_load("k", lambda: "recovered") == "recovered"


def test_none_results_are_not_cached() -> None:
    cache = TTLCache[str, str | None](max_entries=4, ttl_seconds=60)
    calls: list[int] = []

    def _loader() -> str | None:
        calls.append(1)
        return None

    assert cache.get_or_load("missing", _loader) is None
    assert cache.get_or_load("missing", _loader) is None
    assert len(calls) == 2
