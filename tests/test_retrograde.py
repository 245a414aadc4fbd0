# tests/test_retrograde.py
from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from natalchart.core.retrograde import (
    RetrogradeCache,
    RetrogradeClassifier,
    classify_motion,
)

T0 = datetime(2021, 3, 10, 14, 20, tzinfo=timezone.utc)


def _cache(eph, clock, **kw) -> RetrogradeCache:
    return RetrogradeCache(RetrogradeClassifier(eph), clock=clock, **kw)


# ---------- pure motion rule ----------

@pytest.mark.parametrize(
    "current, forward, expected",
    [
        (100.0, 101.0, False),
        (101.0, 100.0, True),
        (359.5, 0.5, False),   # direct across 0°
        (0.5, 359.5, True),    # retrograde across 0°
        (42.0, 42.0, False),
    ],
)
def test_classify_motion(current, forward, expected):
    assert classify_motion(current, forward) is expected


def test_classifier_samples_now_and_a_day_ahead(fake_ephemeris):
    sample = asyncio.run(RetrogradeClassifier(fake_ephemeris).classify("Mars", T0))
    assert sample.is_retrograde is True
    assert sample.longitude == pytest.approx(fake_ephemeris.longitude_at("Mars", T0))
    assert fake_ephemeris.calls["position:Mars"] == 2

    direct = asyncio.run(RetrogradeClassifier(fake_ephemeris).classify("Jupiter", T0))
    assert direct.is_retrograde is False


# ---------- cache behaviour ----------

def test_second_lookup_within_ttl_does_not_resample(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    lon = fake_ephemeris.longitude_at("Mars", T0)

    async def go():
        first = await cache.is_retrograde("Mars", T0, lon)
        clock.advance(60)
        second = await cache.is_retrograde("Mars", T0 + timedelta(minutes=10), lon + 0.05)
        return first, second

    first, second = asyncio.run(go())
    assert first is second is True
    # one classification = two position samples
    assert fake_ephemeris.calls["position:Mars"] == 2
    assert cache.stats()["hits"] == 1


def test_expired_entry_is_a_miss(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock, ttl_s=3600)
    cache.set_cached("Mars", T0, 50.0, True)
    clock.advance(3600)
    assert cache.get_cached("Mars", T0, 50.0) is None
    assert len(cache._store) == 0


def test_drift_beyond_tolerance_is_a_miss(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    cache.set_cached("Venus", T0, 50.0, False)
    assert cache.get_cached("Venus", T0, 50.09) is False
    assert cache.get_cached("Venus", T0, 50.2) is None
    # evicted on the failed check
    assert cache.get_cached("Venus", T0, 50.0) is None


def test_drift_is_measured_across_zero(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    cache.set_cached("Sun", T0, 359.98, False)
    assert cache.get_cached("Sun", T0, 0.03) is False


def test_different_hour_is_a_different_key(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    cache.set_cached("Mars", T0, 50.0, True)
    assert cache.get_cached("Mars", T0 + timedelta(hours=1), 50.0) is None
    assert cache.get_cached("Mars", T0.replace(minute=59), 50.0) is True


def test_corrupt_entry_counts_as_miss(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    cache.set_cached("Mars", T0, 50.0, True)
    key = next(iter(cache._store))
    # payload a future schema might leave behind
    cache._store.set(key, {"not": "an entry"})
    assert cache.get_cached("Mars", T0, 50.0) is None
    assert key not in cache._store


def test_naive_instant_reads_as_miss(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    assert cache.get_cached("Mars", datetime(2021, 3, 10, 14, 0), 50.0) is None


def test_capacity_evicts_oldest_insertion(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock, max_entries=3)
    for h in range(4):
        cache.set_cached("Sun", T0 + timedelta(hours=h), 10.0, False)
    assert len(cache._store) == 3
    assert cache.get_cached("Sun", T0, 10.0) is None
    assert cache.get_cached("Sun", T0 + timedelta(hours=3), 10.0) is False


def test_reinsert_moves_key_to_young_end(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock, max_entries=2)
    cache.set_cached("Sun", T0, 10.0, False)
    cache.set_cached("Moon", T0, 20.0, False)
    cache.set_cached("Sun", T0, 10.0, True)
    cache.set_cached("Mars", T0, 50.0, True)
    assert cache.get_cached("Moon", T0, 20.0) is None
    assert cache.get_cached("Sun", T0, 10.0) is True


def test_longitude_is_sampled_when_omitted(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    assert asyncio.run(cache.is_retrograde("Mars", T0)) is True
    # one lookup sample + two classification samples
    assert fake_ephemeris.calls["position:Mars"] == 3


# ---------- batch ----------

def test_batch_preserves_order_and_reports_cache_source(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    names = ["Sun", "Mars", "Jupiter", "Venus"]
    items = [(n, fake_ephemeris.longitude_at(n, T0)) for n in names]
    cache.set_cached("Jupiter", T0, items[2][1], False)

    out = asyncio.run(cache.batch_is_retrograde(items, T0))
    assert [r.name for r in out] == names
    assert [r.from_cache for r in out] == [False, False, True, False]
    assert [r.is_retrograde for r in out] == [False, True, False, False]
    assert fake_ephemeris.calls["position:Jupiter"] == 0

    again = asyncio.run(cache.batch_is_retrograde(items, T0))
    assert all(r.from_cache for r in again)


def test_batch_failure_is_reported_per_item(make_ephemeris, clock):
    eph = make_ephemeris(fail_bodies={"Saturn"})
    cache = _cache(eph, clock)
    out = asyncio.run(cache.batch_is_retrograde([("Sun", 10.0), ("Saturn", 70.0)], T0))
    assert out[0].error is None
    assert out[1].error is not None and out[1].is_retrograde is False
    assert cache.get_cached("Saturn", T0, 70.0) is None


def test_batch_misses_run_concurrently(make_ephemeris, clock):
    eph = make_ephemeris(delay=0.05)
    cache = _cache(eph, clock)
    items = [(n, eph.longitude_at(n, T0)) for n in ("Sun", "Moon", "Mercury", "Venus", "Mars")]

    async def go():
        loop = asyncio.get_running_loop()
        t0 = loop.time()
        await cache.batch_is_retrograde(items, T0)
        return loop.time() - t0

    # serial would take 5 * 2 * 0.05 = 0.5s
    assert asyncio.run(go()) < 0.3


# ---------- maintenance ----------

def test_cleanup_and_stats(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock, ttl_s=100)
    cache.set_cached("Sun", T0, 10.0, False)
    clock.advance(60)
    cache.set_cached("Moon", T0 + timedelta(hours=2), 20.0, False)
    clock.advance(50)

    assert cache.cleanup() == 1
    s = cache.stats()
    assert s["entries"] == 1
    assert s["buckets"] == 1
    assert s["oldest_bucket"] == s["newest_bucket"] == "2021-03-10T16:00:00+00:00"


def test_preload_fills_hourly_buckets(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    written = asyncio.run(cache.preload(T0, T0 + timedelta(hours=2), ["Sun", "Mars"]))
    # 14:00, 15:00, 16:00
    assert written == 6
    assert cache.stats()["buckets"] == 3
    lon = fake_ephemeris.longitude_at("Mars", T0.replace(minute=0))
    assert cache.get_cached("Mars", T0, lon) is True


def test_clear_resets_everything(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    cache.set_cached("Sun", T0, 10.0, False)
    cache.get_cached("Sun", T0, 10.0)
    cache.clear()
    s = cache.stats()
    assert s["entries"] == 0 and s["hits"] == 0 and s["misses"] == 0


def test_counters_are_exact_under_threads(fake_ephemeris, clock):
    cache = _cache(fake_ephemeris, clock)
    cache.set_cached("Sun", T0, 10.0, False)

    def reader():
        for _ in range(2000):
            cache.get_cached("Sun", T0, 10.0)
            cache.get_cached("Moon", T0, 20.0)

    threads = [threading.Thread(target=reader) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    s = cache.stats()
    assert s["hits"] == 16000
    assert s["misses"] == 16000
    assert s["hit_rate"] == pytest.approx(0.5)
