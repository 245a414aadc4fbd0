# natalchart/core/models.py
"""
Domain value types for the chart pipeline.

Every type here is a frozen dataclass holding tuples, so a Chart handed to a
consumer can never be edited in place; `dataclasses.replace` yields a new one.

Time: an Instant is a timezone-aware `datetime`. The ephemeris boundary and
both caches work in UTC; naive datetimes never get this far (validators.py).
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
import math

from natalchart.core.constants import (
    BODY_SYMBOLS,
    POINT_SYMBOLS,
    ZODIAC_SIGNS,
    ZodiacSign,
)

__all__ = [
    "normalize_longitude", "zodiac_sign", "sign_degree",
    "to_utc", "epoch_ms", "hour_bucket",
    "Observer", "BirthData", "EclipticCoordinate", "LunarNodeEvent", "LunarApsisEvent",
    "BodyReading", "Houses", "ChartAngles", "NodePair", "Aspect", "Chart",
]


# ───────────────────────────── longitude helpers ──────────────────────────
def normalize_longitude(x: float) -> float:
    """Wrap any finite angle to [0, 360)."""
    r = math.fmod(float(x), 360.0)
    if r < 0.0:
        r += 360.0
    # -1e-20 + 360.0 rounds to 360.0
    if r >= 360.0 or abs(r) < 1e-12:
        return 0.0
    return r


def zodiac_sign(longitude: float) -> Tuple[ZodiacSign, float]:
    """Return (sign, degree within sign) for a longitude in degrees."""
    lon = normalize_longitude(longitude)
    idx = min(int(math.floor(lon / 30.0)), 11)
    return ZODIAC_SIGNS[idx], lon % 30.0


def sign_degree(longitude: float) -> float:
    return zodiac_sign(longitude)[1]


# ───────────────────────────── instant helpers ────────────────────────────
def to_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError("instant must be timezone-aware")
    return instant.astimezone(timezone.utc)


def epoch_ms(instant: datetime) -> int:
    return int(round(to_utc(instant).timestamp() * 1000.0))


def hour_bucket(instant: datetime) -> str:
    """UTC instant truncated to the hour, as an ISO string (retrograde cache key)."""
    return to_utc(instant).replace(minute=0, second=0, microsecond=0).isoformat()


# ───────────────────────────── inputs ─────────────────────────────────────
@dataclass(frozen=True)
class Observer:
    latitude: float
    longitude: float
    elevation_m: float = 0.0


@dataclass(frozen=True)
class BirthData:
    instant: datetime
    latitude: float
    longitude: float
    name: Optional[str] = None
    elevation_m: float = 0.0

    @property
    def observer(self) -> Observer:
        return Observer(float(self.latitude), float(self.longitude), float(self.elevation_m or 0.0))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "instant": self.instant.isoformat(),
            "latitude": float(self.latitude),
            "longitude": float(self.longitude),
            "name": self.name,
            "elevation_m": float(self.elevation_m),
        }


# ───────────────────────────── ephemeris boundary ─────────────────────────
@dataclass(frozen=True)
class EclipticCoordinate:
    longitude: float   # [0, 360)
    latitude: float


@dataclass(frozen=True)
class LunarNodeEvent:
    time: datetime
    longitude: float   # Moon longitude at the crossing
    ascending: bool


@dataclass(frozen=True)
class LunarApsisEvent:
    time: datetime
    longitude: float
    kind: str          # "apogee" | "perigee"


# ───────────────────────────── chart parts ────────────────────────────────
@dataclass(frozen=True)
class BodyReading:
    name: str
    symbol: str
    longitude: float
    latitude: float
    sign: str
    sign_degree: float
    house: int = 1
    retrograde: bool = False

    @classmethod
    def at(
        cls,
        name: str,
        longitude: float,
        *,
        latitude: float = 0.0,
        house: int = 1,
        retrograde: bool = False,
        symbol: Optional[str] = None,
    ) -> "BodyReading":
        lon = normalize_longitude(longitude)
        sign, deg = zodiac_sign(lon)
        sym = symbol or BODY_SYMBOLS.get(name) or POINT_SYMBOLS.get(name) or name[:1]
        return cls(
            name=name,
            symbol=sym,
            longitude=lon,
            latitude=float(latitude),
            sign=sign.name,
            sign_degree=deg,
            house=int(house),
            retrograde=bool(retrograde),
        )

    def with_house(self, house: int) -> "BodyReading":
        return replace(self, house=int(house))


@dataclass(frozen=True)
class Houses:
    cusps: Tuple[float, ...]
    system: str

    def __post_init__(self) -> None:
        if len(self.cusps) != 12:
            raise ValueError(f"house system needs exactly 12 cusps, got {len(self.cusps)}")


@dataclass(frozen=True)
class ChartAngles:
    ascendant: BodyReading
    descendant: BodyReading
    midheaven: BodyReading
    imum_coeli: BodyReading

    def as_tuple(self) -> Tuple[BodyReading, ...]:
        return (self.ascendant, self.descendant, self.midheaven, self.imum_coeli)


@dataclass(frozen=True)
class NodePair:
    north_node: BodyReading
    south_node: BodyReading


@dataclass(frozen=True)
class Aspect:
    body1: str
    body2: str
    type: str
    orb: float      # |separation - catalog angle|
    angle: float    # raw separation in [0, 180]


@dataclass(frozen=True)
class Chart:
    birth_data: BirthData
    bodies: Tuple[BodyReading, ...]
    houses: Houses
    aspects: Tuple[Aspect, ...]
    nodes: NodePair
    angles: ChartAngles
    additional_points: Tuple[BodyReading, ...] = ()
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)

    def body(self, name: str) -> Optional[BodyReading]:
        for b in self.bodies:
            if b.name == name:
                return b
        return None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["birth_data"] = self.birth_data.as_dict()
        d["houses"]["cusps"] = [float(c) for c in self.houses.cusps]
        for k in ("bodies", "aspects", "additional_points", "warnings"):
            d[k] = list(d[k])
        return d
