# natalchart/core/houses.py
"""
House-system strategy and house assignment.

The only shipped strategy is Equal House. Its Ascendant is sidereal time plus
half the latitude and its Midheaven is sidereal time alone. These are not
ephemeris-grade angles; a rigorous strategy can replace them by implementing
`HouseSystemStrategy`.

Cusp intervals are closed-open, [cusp[i], cusp[i+1]), walked forward with an
explicit wrap across 360°/0°.
"""
from __future__ import annotations

from typing import List, Protocol, Sequence, Tuple
import logging
import math

from natalchart.core.constants import EQUAL_HOUSE, EQUAL_HOUSE_DEFAULT
from natalchart.core.models import Houses, normalize_longitude

logger = logging.getLogger(__name__)

__all__ = [
    "HouseSystemStrategy",
    "EqualHouseSystem",
    "default_houses",
    "house_for_longitude",
]


class HouseSystemStrategy(Protocol):
    label: str

    def ascendant(self, sidereal_deg: float, latitude: float) -> float: ...

    def midheaven(self, sidereal_deg: float) -> float: ...

    def cusps(self, ascendant: float, midheaven: float) -> Tuple[float, ...]: ...


class EqualHouseSystem:
    """Twelve 30° houses starting at the Ascendant."""

    label = EQUAL_HOUSE
    latitude_factor = 0.5

    def ascendant(self, sidereal_deg: float, latitude: float) -> float:
        if not (math.isfinite(sidereal_deg) and math.isfinite(latitude)):
            raise ValueError("sidereal time and latitude must be finite")
        return normalize_longitude(normalize_longitude(sidereal_deg) + latitude * self.latitude_factor)

    def midheaven(self, sidereal_deg: float) -> float:
        if not math.isfinite(sidereal_deg):
            raise ValueError("sidereal time must be finite")
        return normalize_longitude(sidereal_deg)

    def cusps(self, ascendant: float, midheaven: float) -> Tuple[float, ...]:
        return tuple(normalize_longitude(ascendant + 30.0 * i) for i in range(12))

    def houses(self, sidereal_deg: float, latitude: float) -> Houses:
        asc = self.ascendant(sidereal_deg, latitude)
        cusps = self.cusps(asc, self.midheaven(sidereal_deg))
        logger.debug("equal houses: st=%.4f° lat=%.4f asc=%.4f°", sidereal_deg, latitude, asc)
        return Houses(cusps=cusps, system=self.label)


def default_houses() -> Houses:
    """Fallback cusps at every 30° from 0° Aries."""
    return Houses(cusps=tuple(30.0 * i for i in range(12)), system=EQUAL_HOUSE_DEFAULT)


def house_for_longitude(lon: float, cusps_deg: Sequence[float]) -> int:
    """Find 1..12 using forward-wrap intervals [cusp[i], cusp[i+1]); 1 if nothing matches."""
    if not cusps_deg or len(cusps_deg) < 12:
        return 1
    cusp: List[float] = [normalize_longitude(x) for x in cusps_deg[:12]]
    cusp13 = cusp + [cusp[0]]
    lon = normalize_longitude(lon)
    for i in range(12):
        a, b = cusp13[i], cusp13[i + 1]
        if a < b:
            if a <= lon < b:
                return i + 1
        elif a > b:
            # wraps over 360
            if lon >= a or lon < b:
                return i + 1
    return 1
