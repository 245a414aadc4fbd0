# natalchart/core/ephemeris_adapter.py
# -----------------------------------------------------------------------------
# Ephemeris Adapter (Skyfield)
#
# • Small value-type boundary: callers see EclipticCoordinate / LunarNodeEvent,
#   never Skyfield Time/Vector objects
# • Async surface; Skyfield work runs in worker threads so per-body lookups
#   can be awaited concurrently
# • Thread-safe lazy kernel + timescale bootstrap; no network unless enabled
# • Clean error taxonomy (EphemerisError / BodyNotSupported)
# -----------------------------------------------------------------------------
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Tuple
import asyncio
import logging
import os
import threading

from natalchart.core.constants import CANONICAL_BODIES
from natalchart.core.models import (
    EclipticCoordinate,
    LunarApsisEvent,
    LunarNodeEvent,
    normalize_longitude,
    to_utc,
)

log = logging.getLogger(__name__)

# ─────────────────────────────────────────────────────────────────────────────
# Constants / environment (converted into Config defaults)
# ─────────────────────────────────────────────────────────────────────────────
EPHEMERIS_NAME_DEFAULT = "de421.bsp"

DE421_JD_MIN = float(os.getenv("NATAL_DE421_JD_MIN", "2414992.5"))  # 1899-12-31
DE421_JD_MAX = float(os.getenv("NATAL_DE421_JD_MAX", "2469807.5"))  # 2053-10-09
_ENFORCE_JD_RANGE_ENV = os.getenv("NATAL_ENFORCE_JD_RANGE", "1").lower() in ("1", "true", "yes", "on")
_DOWNLOAD_ENV = os.getenv("NATAL_EPHEMERIS_DOWNLOAD", "0").lower() in ("1", "true", "yes", "on")
_NODE_WINDOW_D_ENV = float(os.getenv("NATAL_NODE_SEARCH_DAYS", "15"))
_APSIS_WINDOW_D_ENV = float(os.getenv("NATAL_APSIS_SEARCH_DAYS", "28"))

# ─────────────────────────────────────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────────────────────────────────────
class EphemerisError(RuntimeError):
    """Categorized error for adapter callers."""
    def __init__(self, stage: str, message: str, **context: Any):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message
        self.context = context


class BodyNotSupported(EphemerisError):
    def __init__(self, name: str):
        super().__init__("body", f"unsupported body '{name}'", body=name)
        self.body = name

# ─────────────────────────────────────────────────────────────────────────────
# Catalogs & canonicalization
# ─────────────────────────────────────────────────────────────────────────────
_PLANET_KEYS: Dict[str, str] = {
    "Sun": "sun",
    "Moon": "moon",
    "Mercury": "mercury",
    "Venus": "venus",
    "Mars": "mars",
    "Jupiter": "jupiter barycenter",
    "Saturn": "saturn barycenter",
    "Uranus": "uranus barycenter",
    "Neptune": "neptune barycenter",
    "Pluto": "pluto barycenter",
}
_CANON = {k.lower(): k for k in CANONICAL_BODIES}


def canonical_body(name: Any) -> str:
    """'mars' / ' Mars ' → 'Mars'; anything outside the canonical ten raises."""
    if not isinstance(name, str):
        raise BodyNotSupported(repr(name))
    canon = _CANON.get(name.strip().lower())
    if canon is None:
        raise BodyNotSupported(name)
    return canon


def local_sidereal_time(greenwich_deg: float, longitude: float) -> float:
    """Local sidereal time in degrees (east longitudes positive)."""
    return normalize_longitude(float(greenwich_deg) + float(longitude))

# ─────────────────────────────────────────────────────────────────────────────
# Adapter contract
# ─────────────────────────────────────────────────────────────────────────────
class EphemerisAdapter(Protocol):
    async def position(self, body: str, instant: datetime) -> EclipticCoordinate: ...

    async def sidereal_time(self, instant: datetime) -> float: ...

    async def search_nearest_lunar_node(self, instant: datetime) -> LunarNodeEvent: ...

    async def search_lunar_apsides(self, instant: datetime) -> Tuple[LunarApsisEvent, ...]: ...

# ─────────────────────────────────────────────────────────────────────────────
# Adapter configuration
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Config:
    kernel_path: Optional[str] = None           # None → env / ./data/de421.bsp
    allow_download: bool = _DOWNLOAD_ENV
    node_search_days: float = _NODE_WINDOW_D_ENV
    apsis_search_days: float = _APSIS_WINDOW_D_ENV

    # JD guard
    enforce_jd_range: bool = _ENFORCE_JD_RANGE_ENV
    jd_min: float = DE421_JD_MIN
    jd_max: float = DE421_JD_MAX

# ─────────────────────────────────────────────────────────────────────────────
# Kernel I/O
# ─────────────────────────────────────────────────────────────────────────────
def _resolve_kernel_path(explicit: Optional[str]) -> Optional[str]:
    for cand in (explicit, os.getenv("NATAL_EPHEMERIS")):
        if cand and os.path.isfile(cand):
            return cand
    fallback = os.path.join(os.getcwd(), "data", EPHEMERIS_NAME_DEFAULT)
    return fallback if os.path.isfile(fallback) else None


def _looks_like_lfs_pointer(path: str) -> bool:
    try:
        if os.path.getsize(path) <= 512:
            with open(path, "rb") as f:
                head = f.read(128)
            return head.startswith(b"version https://git-lfs.github.com/spec/v1")
    except OSError:
        pass
    return False

# ─────────────────────────────────────────────────────────────────────────────
# Skyfield adapter
# ─────────────────────────────────────────────────────────────────────────────
class SkyfieldEphemeris:
    """Geocentric apparent positions in the ecliptic-of-date frame."""

    def __init__(self, cfg: Optional[Config] = None):
        self.cfg = cfg or Config()
        self._ts = None
        self._kernel = None
        self._kernel_path: Optional[str] = None
        self._lock = threading.Lock()

    # ---- bootstrap ----------------------------------------------------------
    def _get_timescale(self):
        if self._ts is not None:
            return self._ts
        from skyfield.api import load
        with self._lock:
            if self._ts is None:
                self._ts = load.timescale()
        return self._ts

    def _get_kernel(self):
        """Thread-safe lazy load of the planetary kernel."""
        if self._kernel is not None:
            return self._kernel
        from skyfield.api import Loader, load
        with self._lock:
            if self._kernel is not None:
                return self._kernel
            path = _resolve_kernel_path(self.cfg.kernel_path)
            if path is None:
                if not self.cfg.allow_download:
                    raise EphemerisError(
                        "kernel",
                        "No local DE421 found (set NATAL_EPHEMERIS, place data/de421.bsp, "
                        "or enable NATAL_EPHEMERIS_DOWNLOAD=1)",
                    )
                data_dir = os.path.join(os.getcwd(), "data")
                os.makedirs(data_dir, exist_ok=True)
                log.info("downloading %s into %s", EPHEMERIS_NAME_DEFAULT, data_dir)
                try:
                    self._kernel = Loader(data_dir)(EPHEMERIS_NAME_DEFAULT)
                except Exception as e:
                    raise EphemerisError("kernel", "kernel download failed", error=str(e)) from e
                self._kernel_path = os.path.join(data_dir, EPHEMERIS_NAME_DEFAULT)
                return self._kernel
            if _looks_like_lfs_pointer(path):
                raise EphemerisError("kernel", f"Kernel looks like a Git LFS pointer: {path}")
            try:
                self._kernel = load(path)
            except Exception as e:
                raise EphemerisError("kernel", f"Skyfield failed to load kernel: {path}", error=str(e)) from e
            self._kernel_path = path
            log.info("ephemeris kernel loaded: %s", path)
        return self._kernel

    def kernel_name(self) -> str:
        return os.path.basename(self._kernel_path) if self._kernel_path else EPHEMERIS_NAME_DEFAULT

    # ---- time ---------------------------------------------------------------
    def _time(self, instant: datetime):
        if not isinstance(instant, datetime):
            raise EphemerisError("validation", "instant must be a datetime", got=type(instant).__name__)
        try:
            utc = to_utc(instant)
        except ValueError as e:
            raise EphemerisError("validation", str(e)) from e
        t = self._get_timescale().from_datetime(utc)
        self._check_jd_guard(float(t.tt))
        return t

    def _check_jd_guard(self, jd_tt: float) -> None:
        if self.cfg.enforce_jd_range and not (self.cfg.jd_min <= jd_tt <= self.cfg.jd_max):
            raise EphemerisError("validation", "Julian date outside DE421 nominal span", jd_tt=jd_tt)

    # ---- sync computations --------------------------------------------------
    def _ecliptic_at(self, name: str, t) -> EclipticCoordinate:
        from skyfield.framelib import ecliptic_frame
        k = self._get_kernel()
        try:
            earth = k["earth"]
            body = k[_PLANET_KEYS[name]]
            lat, lon, _dist = earth.at(t).observe(body).apparent().frame_latlon(ecliptic_frame)
        except EphemerisError:
            raise
        except Exception as e:
            raise EphemerisError("compute", f"position failed for {name}", error=f"{type(e).__name__}: {e}") from e
        return EclipticCoordinate(normalize_longitude(float(lon.degrees)), float(lat.degrees))

    def position_sync(self, body: str, instant: datetime) -> EclipticCoordinate:
        name = canonical_body(body)
        return self._ecliptic_at(name, self._time(instant))

    def sidereal_time_sync(self, instant: datetime) -> float:
        t = self._time(instant)
        return normalize_longitude(float(t.gast) * 15.0)

    def _nearest(self, times, center_tt: float) -> int:
        best, best_d = -1, float("inf")
        for i, ti in enumerate(times):
            d = abs(float(ti.tt) - center_tt)
            if d < best_d:
                best, best_d = i, d
        return best

    def lunar_node_sync(self, instant: datetime) -> LunarNodeEvent:
        from skyfield import almanac
        t = self._time(instant)
        ts = self._get_timescale()
        k = self._get_kernel()
        utc = to_utc(instant)
        window = timedelta(days=self.cfg.node_search_days)
        try:
            times, kinds = almanac.find_discrete(
                ts.from_datetime(utc - window), ts.from_datetime(utc + window), almanac.moon_nodes(k)
            )
        except Exception as e:
            raise EphemerisError("search", "lunar node search failed", error=f"{type(e).__name__}: {e}") from e
        if len(times) == 0:
            raise EphemerisError("search", "no lunar node inside search window", days=self.cfg.node_search_days)
        i = self._nearest(times, float(t.tt))
        t_node = times[i]
        coord = self._ecliptic_at("Moon", t_node)
        # almanac.MOON_NODES == ['descending', 'ascending']
        ascending = int(kinds[i]) == 1
        return LunarNodeEvent(time=t_node.utc_datetime(), longitude=coord.longitude, ascending=ascending)

    def lunar_apsides_sync(self, instant: datetime) -> Tuple[LunarApsisEvent, ...]:
        from skyfield.searchlib import find_maxima, find_minima
        t = self._time(instant)
        ts = self._get_timescale()
        k = self._get_kernel()
        earth, moon = k["earth"], k["moon"]

        def moon_distance_km(tt):
            return earth.at(tt).observe(moon).distance().km
        moon_distance_km.step_days = 1.0

        utc = to_utc(instant)
        window = timedelta(days=self.cfg.apsis_search_days)
        t0, t1 = ts.from_datetime(utc - window), ts.from_datetime(utc + window)
        out: List[LunarApsisEvent] = []
        for kind, finder in (("apogee", find_maxima), ("perigee", find_minima)):
            try:
                times, _values = finder(t0, t1, moon_distance_km)
            except Exception as e:
                raise EphemerisError("search", f"lunar {kind} search failed", error=f"{type(e).__name__}: {e}") from e
            if len(times) == 0:
                continue
            ti = times[self._nearest(times, float(t.tt))]
            coord = self._ecliptic_at("Moon", ti)
            out.append(LunarApsisEvent(time=ti.utc_datetime(), longitude=coord.longitude, kind=kind))
        return tuple(out)

    # ---- async surface ------------------------------------------------------
    async def position(self, body: str, instant: datetime) -> EclipticCoordinate:
        name = canonical_body(body)
        return await asyncio.to_thread(self.position_sync, name, instant)

    async def sidereal_time(self, instant: datetime) -> float:
        return await asyncio.to_thread(self.sidereal_time_sync, instant)

    async def search_nearest_lunar_node(self, instant: datetime) -> LunarNodeEvent:
        return await asyncio.to_thread(self.lunar_node_sync, instant)

    async def search_lunar_apsides(self, instant: datetime) -> Tuple[LunarApsisEvent, ...]:
        return await asyncio.to_thread(self.lunar_apsides_sync, instant)

    # ---- diagnostics --------------------------------------------------------
    def diagnostics(self) -> Dict[str, Any]:
        return {
            "kernel": self.kernel_name(),
            "kernel_loaded": self._kernel is not None,
            "kernel_path": self._kernel_path or _resolve_kernel_path(self.cfg.kernel_path),
            "download_enabled": self.cfg.allow_download,
            "bodies": list(CANONICAL_BODIES),
            "jd_guard": {"enforced": self.cfg.enforce_jd_range, "min": self.cfg.jd_min, "max": self.cfg.jd_max},
        }


__all__ = [
    "Config",
    "EphemerisAdapter",
    "SkyfieldEphemeris",
    "EphemerisError",
    "BodyNotSupported",
    "canonical_body",
    "local_sidereal_time",
]
