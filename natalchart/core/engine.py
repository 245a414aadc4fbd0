# natalchart/core/engine.py
"""
Composition root. Wires adapter → retrograde cache → calculator → chart cache
→ service → scheduler from settings, and owns the process-wide default
instance so the HTTP layer and scripts share one set of caches.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging
import threading

from natalchart.core.chart import CalculatorConfig, ChartCalculator
from natalchart.core.chart_cache import ChartCache, ChartService, RecomputeScheduler
from natalchart.core.ephemeris_adapter import Config as EphemerisConfig
from natalchart.core.ephemeris_adapter import EphemerisAdapter, SkyfieldEphemeris
from natalchart.core.houses import EqualHouseSystem
from natalchart.core.retrograde import RetrogradeCache, RetrogradeClassifier
from natalchart.utils.config import load_settings

log = logging.getLogger(__name__)

__all__ = ["ChartEngine", "build_engine", "get_default_engine", "reset_default_engine"]


@dataclass
class ChartEngine:
    ephemeris: EphemerisAdapter
    retrograde_cache: RetrogradeCache
    calculator: ChartCalculator
    chart_cache: ChartCache
    service: ChartService
    scheduler: RecomputeScheduler

    def clear(self) -> None:
        """Empty both caches."""
        self.retrograde_cache.clear()
        self.chart_cache.clear()

    def dispose(self) -> None:
        self.scheduler.cancel()
        self.clear()
        log.info("chart engine disposed")

    def stats(self) -> Dict[str, Any]:
        return {
            "retrograde_cache": self.retrograde_cache.stats(),
            "chart_cache": {
                "generation": self.chart_cache.generation,
                "latest_key": self.chart_cache.latest_key,
            },
            "scheduler": {"status": self.scheduler.state.status},
        }


def build_engine(settings: Optional[Any] = None, ephemeris: Optional[EphemerisAdapter] = None) -> ChartEngine:
    s = settings if settings is not None else load_settings()
    if ephemeris is None:
        ephemeris = SkyfieldEphemeris(EphemerisConfig(
            kernel_path=s.ephemeris.path,
            allow_download=bool(s.ephemeris.download),
        ))
    retro = RetrogradeCache(
        RetrogradeClassifier(ephemeris),
        ttl_s=float(s.retrograde.ttl_s),
        tolerance_deg=float(s.retrograde.tolerance_deg),
        max_entries=int(s.retrograde.max_entries),
    )
    calculator = ChartCalculator(
        ephemeris,
        retro,
        house_system=EqualHouseSystem(),
        config=CalculatorConfig(aspect_points=bool(s.aspects.include_points)),
    )
    cache = ChartCache()
    service = ChartService(calculator, cache)
    scheduler = RecomputeScheduler(service, debounce_s=float(s.scheduler.debounce_s))
    return ChartEngine(ephemeris, retro, calculator, cache, service, scheduler)


_DEFAULT: Optional[ChartEngine] = None
_DEFAULT_LOCK = threading.Lock()


def get_default_engine() -> ChartEngine:
    global _DEFAULT
    if _DEFAULT is not None:
        return _DEFAULT
    with _DEFAULT_LOCK:
        if _DEFAULT is None:
            _DEFAULT = build_engine()
            log.info("default chart engine built")
    return _DEFAULT


def reset_default_engine() -> None:
    global _DEFAULT
    with _DEFAULT_LOCK:
        eng, _DEFAULT = _DEFAULT, None
    if eng is not None:
        eng.dispose()
