# natalchart/core/chart_cache.py
"""
Chart result cache and the debounced recompute scheduler.

The cache holds one chart (the most recent birth data). Every computation is
tagged with a generation from a monotonic counter; a result is installed only
when its generation is still the newest requested, so a slow computation for
an old input can never overwrite the chart for a newer one. A stale result is
still handed back to whoever awaited it.

The scheduler coalesces bursts of input edits: each request restarts a short
quiescence window, and only the request that survives the window computes.
Work already computing is not cancelled; the generation check discards it.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Set
import asyncio
import logging
import threading

from natalchart.core.chart import ChartCalculator
from natalchart.core.constants import DEBOUNCE_S
from natalchart.core.models import BirthData, Chart, epoch_ms
from natalchart.core.validators import validate_birth_data
from natalchart.utils.metrics import MET_CHART_CACHE

log = logging.getLogger(__name__)

__all__ = [
    "ChartCache",
    "ChartService",
    "ScheduleState",
    "RecomputeScheduler",
]


class ChartCache:
    """Single-slot, generation-guarded chart store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._key: Optional[str] = None
        self._chart: Optional[Chart] = None
        self._generation = 0
        self._latest_key: Optional[str] = None

    @staticmethod
    def key_for(birth: BirthData) -> str:
        return f"{epoch_ms(birth.instant)}-{float(birth.latitude)}-{float(birth.longitude)}"

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def latest_key(self) -> Optional[str]:
        with self._lock:
            return self._latest_key

    def lookup(self, key: str) -> Optional[Chart]:
        with self._lock:
            if self._chart is not None and self._key == key:
                return self._chart
            return None

    def begin(self, key: str) -> int:
        """Register a computation for `key`; returns its generation."""
        with self._lock:
            self._generation += 1
            self._latest_key = key
            return self._generation

    def touch(self, key: str) -> None:
        """Mark `key` as the newest request without computing; in-flight work for other keys goes stale."""
        with self._lock:
            self._generation += 1
            self._latest_key = key

    def commit(self, generation: int, key: str, chart: Chart) -> bool:
        """Install `chart` only if `generation` is still the newest. Returns whether it was installed."""
        with self._lock:
            if generation != self._generation:
                return False
            self._key = key
            self._chart = chart
            return True

    def clear(self) -> None:
        with self._lock:
            # bump so anything in flight is treated as stale
            self._generation += 1
            self._key = None
            self._chart = None
            self._latest_key = None


class ChartService:
    def __init__(self, calculator: ChartCalculator, cache: Optional[ChartCache] = None):
        self.calculator = calculator
        self.cache = cache or ChartCache()

    async def get_or_compute(self, birth: BirthData) -> Chart:
        birth = validate_birth_data(birth)
        key = self.cache.key_for(birth)
        hit = self.cache.lookup(key)
        if hit is not None:
            self.cache.touch(key)
            MET_CHART_CACHE.labels(result="hit").inc()
            log.debug("chart cache hit for %s", key)
            return hit

        MET_CHART_CACHE.labels(result="miss").inc()
        generation = self.cache.begin(key)
        chart = await self.calculator.calculate_chart(birth)
        if self.cache.commit(generation, key, chart):
            MET_CHART_CACHE.labels(result="commit").inc()
        else:
            MET_CHART_CACHE.labels(result="stale").inc()
            log.debug("discarding stale chart for %s (generation %d)", key, generation)
        return chart


@dataclass(frozen=True)
class ScheduleState:
    status: str = "idle"     # idle | pending | computing | ready | failed
    chart: Optional[Chart] = None
    error: Optional[BaseException] = None
    generation: int = 0


ChartListener = Callable[[Chart], None]
ErrorListener = Callable[[BaseException], None]


class RecomputeScheduler:
    def __init__(self, service: ChartService, debounce_s: float = DEBOUNCE_S):
        if debounce_s < 0:
            raise ValueError("debounce_s must be >= 0")
        self.service = service
        self.debounce_s = float(debounce_s)
        self.state = ScheduleState()
        self._generation = 0
        self._debouncing: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._chart_listeners: List[ChartListener] = []
        self._error_listeners: List[ErrorListener] = []

    # ---- listeners ----------------------------------------------------------
    def on_chart(self, cb: ChartListener) -> Callable[[], None]:
        self._chart_listeners.append(cb)
        return lambda: self._chart_listeners.remove(cb)

    def on_error(self, cb: ErrorListener) -> Callable[[], None]:
        self._error_listeners.append(cb)
        return lambda: self._error_listeners.remove(cb)

    def _notify(self, listeners, value) -> None:
        for cb in list(listeners):
            try:
                cb(value)
            except Exception:
                log.exception("scheduler listener %r failed", cb)

    # ---- scheduling ---------------------------------------------------------
    def request(self, birth: BirthData) -> "asyncio.Task[Optional[Chart]]":
        """
        Schedule a recompute after the quiescence window. Must be called from
        a running event loop. The task resolves to the chart, or None when the
        request was superseded or failed (see `state`).
        """
        self._generation += 1
        gen = self._generation
        prev = self._debouncing
        if prev is not None and not prev.done():
            prev.cancel()
        task = asyncio.get_running_loop().create_task(self._run(gen, birth))
        self._debouncing = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.state = replace(self.state, status="pending", error=None, generation=gen)
        return task

    async def _run(self, gen: int, birth: BirthData) -> Optional[Chart]:
        try:
            await asyncio.sleep(self.debounce_s)
        finally:
            if self._debouncing is asyncio.current_task():
                self._debouncing = None
        if gen != self._generation:
            return None

        self.state = replace(self.state, status="computing", generation=gen)
        try:
            chart = await self.service.get_or_compute(birth)
        except Exception as e:
            if gen != self._generation:
                log.debug("superseded recompute %d failed: %s", gen, e)
                return None
            log.warning("chart recompute failed: %s", e)
            self.state = replace(self.state, status="failed", error=e, generation=gen)
            self._notify(self._error_listeners, e)
            return None

        if gen != self._generation:
            log.debug("dropping superseded recompute %d", gen)
            return None
        self.state = ScheduleState(status="ready", chart=chart, error=None, generation=gen)
        self._notify(self._chart_listeners, chart)
        return chart

    async def flush(self) -> Optional[Chart]:
        """Wait for all scheduled work; returns the current chart."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return self.state.chart

    def cancel(self) -> None:
        """Drop pending requests and ignore anything still computing."""
        self._generation += 1
        for task in list(self._tasks):
            task.cancel()
        self._debouncing = None
        self.state = replace(self.state, status="idle", error=None, generation=self._generation)
