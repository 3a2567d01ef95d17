from __future__ import annotations

from pathlib import Path
import sys
import threading

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from desk_insights.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(60, clock=clock)
    cache.set("tickets", [1, 2])

    clock.now += 59
    assert cache.get("tickets") == [1, 2]
    assert "tickets" in cache

    clock.now += 1
    assert cache.get("tickets") is None
    assert "tickets" not in cache


def test_per_entry_ttl_and_invalidation():
    clock = FakeClock()
    cache = TTLCache(60, clock=clock)
    cache.set("short", "a", ttl=5)
    cache.set("long", "b")

    clock.now += 10
    assert cache.get("short", "missing") == "missing"
    assert cache.get("long") == "b"

    cache.invalidate("long")
    assert cache.get("long") is None
    cache.set("x", 1)
    cache.clear()
    assert "x" not in cache


def test_get_or_compute_reuses_cached_value():
    clock = FakeClock()
    cache = TTLCache(60, clock=clock)
    calls = []

    def compute():
        calls.append(1)
        return len(calls)

    assert cache.get_or_compute("k", compute) == 1
    assert cache.get_or_compute("k", compute) == 1
    clock.now += 61
    assert cache.get_or_compute("k", compute) == 2


def test_failed_computation_is_not_cached():
    cache = TTLCache(60)

    def boom():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        cache.get_or_compute("k", boom)
    assert cache.get_or_compute("k", lambda: "recovered") == "recovered"


def test_concurrent_callers_share_one_computation():
    cache = TTLCache(60)
    started = threading.Event()
    release = threading.Event()
    calls = []
    results = []

    def slow_compute():
        calls.append(1)
        started.set()
        release.wait(timeout=5)
        return "value"

    def worker():
        results.append(cache.get_or_compute("k", slow_compute))

    leader = threading.Thread(target=worker)
    leader.start()
    assert started.wait(timeout=5)
    followers = [threading.Thread(target=worker) for _ in range(4)]
    for thread in followers:
        thread.start()
    release.set()
    for thread in [leader, *followers]:
        thread.join(timeout=5)

    assert calls == [1]
    assert results == ["value"] * 5


def test_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        TTLCache(0)
