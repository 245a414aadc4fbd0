# natalchart/core/retrograde.py
"""
Retrograde classification and its cache.

Classification samples a body's ecliptic longitude at the instant and one day
later; the body is retrograde when the later sample is smaller once the
0°/360° wrap has been undone.

The cache is keyed by (UTC hour bucket, body). An entry answers a lookup only
while it is younger than the TTL and the caller's current longitude is within
the drift tolerance of the longitude it was computed at; anything else is a
miss and the entry is evicted. Size is capped with insertion-order eviction.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import logging
import math
import threading
import time

from natalchart.core.constants import (
    RETROGRADE_MAX_ENTRIES,
    RETROGRADE_TOLERANCE_DEG,
    RETROGRADE_TTL_S,
)
from natalchart.core.ephemeris_adapter import EphemerisAdapter
from natalchart.core.models import hour_bucket, normalize_longitude, to_utc
from natalchart.utils.cache import BoundedCache
from natalchart.utils.metrics import MET_RETRO_CACHE

log = logging.getLogger(__name__)

__all__ = [
    "RetrogradeSample",
    "RetrogradeCacheEntry",
    "RetrogradeResult",
    "classify_motion",
    "RetrogradeClassifier",
    "RetrogradeCache",
]


@dataclass(frozen=True)
class RetrogradeSample:
    is_retrograde: bool
    longitude: float


@dataclass(frozen=True)
class RetrogradeCacheEntry:
    is_retrograde: bool
    computed_at: float   # wall clock, seconds
    longitude: float


@dataclass(frozen=True)
class RetrogradeResult:
    name: str
    is_retrograde: bool
    from_cache: bool
    error: Optional[str] = None


def classify_motion(current: float, forward: float) -> bool:
    cur = normalize_longitude(current)
    fwd = normalize_longitude(forward)
    if fwd < cur and (cur - fwd) > 180.0:
        fwd += 360.0
    elif cur < fwd and (fwd - cur) > 180.0:
        cur += 360.0
    return fwd < cur


def _drift(a: float, b: float) -> float:
    d = abs(float(a) - float(b)) % 360.0
    return min(d, 360.0 - d)


class RetrogradeClassifier:
    def __init__(self, ephemeris: EphemerisAdapter, step: timedelta = timedelta(days=1)):
        self.ephemeris = ephemeris
        self.step = step

    async def classify(self, body: str, instant: datetime) -> RetrogradeSample:
        now, ahead = await asyncio.gather(
            self.ephemeris.position(body, instant),
            self.ephemeris.position(body, instant + self.step),
        )
        return RetrogradeSample(classify_motion(now.longitude, ahead.longitude), now.longitude)


class RetrogradeCache:
    def __init__(
        self,
        classifier: RetrogradeClassifier,
        *,
        ttl_s: float = RETROGRADE_TTL_S,
        tolerance_deg: float = RETROGRADE_TOLERANCE_DEG,
        max_entries: int = RETROGRADE_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.classifier = classifier
        self.ttl_s = float(ttl_s)
        self.tolerance_deg = float(tolerance_deg)
        self.clock = clock
        self._store = BoundedCache(max_entries)
        self._counter_lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def max_entries(self) -> int:
        return self._store.capacity

    # ---- entry validity -----------------------------------------------------
    def _is_valid(self, entry: RetrogradeCacheEntry, longitude: float, now: float) -> bool:
        return (now - entry.computed_at) < self.ttl_s and _drift(entry.longitude, longitude) < self.tolerance_deg

    def _miss(self) -> None:
        with self._counter_lock:
            self.misses += 1
        MET_RETRO_CACHE.labels(result="miss").inc()

    # ---- sync cache surface -------------------------------------------------
    def get_cached(self, body: str, instant: datetime, longitude: float) -> Optional[bool]:
        """Cached flag, or None on miss. Unreadable/corrupt entries count as misses."""
        try:
            key = (hour_bucket(instant), body)
            entry = self._store.get(key)
            if entry is None:
                self._miss()
                return None
            if not isinstance(entry, RetrogradeCacheEntry) or not math.isfinite(float(entry.longitude)):
                log.debug("retrograde cache: corrupt entry for %s evicted", key)
                self._store.pop_if(key, entry)
                self._miss()
                return None
            if self._is_valid(entry, longitude, self.clock()):
                with self._counter_lock:
                    self.hits += 1
                MET_RETRO_CACHE.labels(result="hit").inc()
                log.debug("retrograde cache hit for %s @ %s", body, key[0])
                return entry.is_retrograde
            self._store.pop_if(key, entry)
        except (TypeError, ValueError) as e:
            log.debug("retrograde cache read failed for %s: %s", body, e)
        self._miss()
        return None

    def set_cached(self, body: str, instant: datetime, longitude: float, is_retrograde: bool) -> None:
        key = (hour_bucket(instant), body)
        entry = RetrogradeCacheEntry(bool(is_retrograde), self.clock(), float(longitude))
        for old_key, _ in self._store.set(key, entry):
            log.debug("retrograde cache full; evicted %s", old_key)

    # ---- async surface ------------------------------------------------------
    async def is_retrograde(self, body: str, instant: datetime, longitude: Optional[float] = None) -> bool:
        if longitude is None:
            longitude = (await self.classifier.ephemeris.position(body, instant)).longitude
        cached = self.get_cached(body, instant, longitude)
        if cached is not None:
            return cached
        sample = await self.classifier.classify(body, instant)
        self.set_cached(body, instant, longitude, sample.is_retrograde)
        return sample.is_retrograde

    async def batch_is_retrograde(
        self,
        items: Sequence[Tuple[str, float]],
        instant: datetime,
    ) -> List[RetrogradeResult]:
        """
        Resolve hits synchronously, then classify every miss concurrently.
        Output order follows `items`; a failed classification is reported on
        its own result (not cached) instead of failing the batch.
        """
        results: List[Optional[RetrogradeResult]] = [None] * len(items)
        pending: List[Tuple[int, str, float]] = []
        for i, (name, lon) in enumerate(items):
            cached = self.get_cached(name, instant, lon)
            if cached is not None:
                results[i] = RetrogradeResult(name, cached, True)
            else:
                pending.append((i, name, lon))

        if pending:
            log.debug("classifying retrograde state for %d bodies", len(pending))

            async def _compute(name: str, lon: float) -> bool:
                sample = await self.classifier.classify(name, instant)
                self.set_cached(name, instant, lon, sample.is_retrograde)
                return sample.is_retrograde

            done = await asyncio.gather(*(_compute(n, l) for _, n, l in pending), return_exceptions=True)
            for (i, name, _lon), res in zip(pending, done):
                if isinstance(res, Exception):
                    log.warning("retrograde classification failed for %s: %s", name, res)
                    results[i] = RetrogradeResult(name, False, False, error=f"{type(res).__name__}: {res}")
                elif isinstance(res, BaseException):
                    raise res
                else:
                    results[i] = RetrogradeResult(name, bool(res), False)
        return [r for r in results if r is not None]

    # ---- maintenance --------------------------------------------------------
    def cleanup(self) -> int:
        """Drop entries older than the TTL. Returns how many were removed."""
        now = self.clock()
        removed = 0
        for key, entry in self._store.items():
            stale = not isinstance(entry, RetrogradeCacheEntry) or (now - entry.computed_at) >= self.ttl_s
            if stale and self._store.pop_if(key, entry):
                removed += 1
        if removed:
            log.info("cleaned up %d expired retrograde cache entries", removed)
        return removed

    def stats(self) -> Dict[str, Any]:
        items = self._store.items()
        buckets = sorted({k[0] for k, _ in items})
        with self._counter_lock:
            hits, misses = self.hits, self.misses
        lookups = hits + misses
        return {
            "entries": len(items),
            "buckets": len(buckets),
            "max_entries": self.max_entries,
            "hits": hits,
            "misses": misses,
            "hit_rate": (hits / lookups) if lookups else 0.0,
            "oldest_bucket": buckets[0] if buckets else None,
            "newest_bucket": buckets[-1] if buckets else None,
        }

    async def preload(self, start: datetime, end: datetime, bodies: Sequence[str]) -> int:
        """Warm the cache hour by hour over [start, end]. Returns entries written."""
        current = to_utc(start).replace(minute=0, second=0, microsecond=0)
        stop = to_utc(end)
        written = 0
        while current <= stop:
            samples = await asyncio.gather(*(self.classifier.classify(b, current) for b in bodies))
            for body, sample in zip(bodies, samples):
                self.set_cached(body, current, sample.longitude, sample.is_retrograde)
                written += 1
            current += timedelta(hours=1)
        log.info("preloaded %d retrograde cache entries", written)
        return written

    def clear(self) -> None:
        self._store.clear()
        with self._counter_lock:
            self.hits = 0
            self.misses = 0
        log.info("retrograde cache cleared")
