# natalchart/core/chart.py
"""
Chart Calculator: one birth moment in, one immutable Chart out.

Stages run concurrently where they are independent (every body position,
sidereal time, lunar node search, lunar apsis search). Each stage reports a
StageResult instead of raising; the assembler substitutes documented
defaults for failed stages and records a warning, so the only exception that
escapes `calculate_chart` is InvalidBirthData (raised before any ephemeris
work).

Fallbacks
---------
houses  : cusps 0,30,...,330 labelled "Equal House (Default)"
angles  : ASC 0° Aries, DSC 180° Libra, MC 270° Capricorn, IC 90° Cancer
nodes   : North 0° Aries in house 1, South 180° Libra in house 7
body    : omitted from the chart
retro   : flag stays False, body kept
points  : Lilith/Selena omitted
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar
import asyncio
import logging
import time

from natalchart.core.aspects import detect_aspects
from natalchart.core.constants import ASPECT_CATALOG, CANONICAL_BODIES, AspectType
from natalchart.core.ephemeris_adapter import EphemerisAdapter
from natalchart.core.houses import (
    EqualHouseSystem,
    HouseSystemStrategy,
    default_houses,
    house_for_longitude,
)
from natalchart.core.models import (
    BirthData,
    BodyReading,
    Chart,
    ChartAngles,
    EclipticCoordinate,
    Houses,
    LunarApsisEvent,
    LunarNodeEvent,
    NodePair,
    normalize_longitude,
    to_utc,
)
from natalchart.core.retrograde import RetrogradeCache
from natalchart.core.validators import validate_birth_data
from natalchart.utils.metrics import CHART_LATENCY, MET_CHARTS, MET_FALLBACKS

log = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "CalcError",
    "BodyCalculationFailed",
    "HouseCalculationFailed",
    "AngleCalculationFailed",
    "NodeCalculationFailed",
    "PointCalculationFailed",
    "StageResult",
    "CalculatorConfig",
    "ChartCalculator",
    "default_angles",
    "default_nodes",
]


# ───────────────────────────── errors ─────────────────────────────────────
class CalcError(Exception):
    """A chart subsystem failed; absorbed by the calculator, never raised to callers."""
    stage = "chart"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context

    def to_warning(self) -> str:
        return f"{self.stage}: {self}"


class BodyCalculationFailed(CalcError):
    stage = "body"

    def __init__(self, body: str, message: str, **context: Any):
        super().__init__(f"{body}: {message}", body=body, **context)
        self.body = body


class HouseCalculationFailed(CalcError):
    stage = "houses"


class AngleCalculationFailed(CalcError):
    stage = "angles"


class NodeCalculationFailed(CalcError):
    stage = "nodes"


class PointCalculationFailed(CalcError):
    stage = "points"


@dataclass(frozen=True)
class StageResult(Generic[T]):
    stage: str
    value: Optional[T] = None
    error: Optional[CalcError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CalculatorConfig:
    bodies: Tuple[str, ...] = CANONICAL_BODIES
    aspect_points: bool = False          # also scan angles and nodes for aspects
    additional_points: bool = True       # Lilith / Selena from lunar apsides
    flip_descending_node: bool = False   # treat a descending crossing as the South Node
    catalog: Tuple[AspectType, ...] = ASPECT_CATALOG


# ───────────────────────────── defaults ───────────────────────────────────
def default_angles() -> ChartAngles:
    return ChartAngles(
        ascendant=BodyReading.at("Ascendant", 0.0, house=1),
        descendant=BodyReading.at("Descendant", 180.0, house=7),
        midheaven=BodyReading.at("Midheaven", 270.0, house=10),
        imum_coeli=BodyReading.at("Imum Coeli", 90.0, house=4),
    )


def default_nodes() -> NodePair:
    return NodePair(
        north_node=BodyReading.at("North Node", 0.0, house=1),
        south_node=BodyReading.at("South Node", 180.0, house=7),
    )


def _describe(e: BaseException) -> str:
    return f"{type(e).__name__}: {e}"


# ───────────────────────────── calculator ─────────────────────────────────
class ChartCalculator:
    def __init__(
        self,
        ephemeris: EphemerisAdapter,
        retrograde_cache: RetrogradeCache,
        house_system: Optional[HouseSystemStrategy] = None,
        config: Optional[CalculatorConfig] = None,
    ):
        self.ephemeris = ephemeris
        self.retrograde_cache = retrograde_cache
        self.house_system = house_system or EqualHouseSystem()
        self.config = config or CalculatorConfig()

    # ---- stage plumbing -----------------------------------------------------
    async def _run(
        self,
        stage: str,
        make_error: Callable[[str], CalcError],
        aw: Awaitable[T],
    ) -> StageResult[T]:
        try:
            return StageResult(stage, value=await aw)
        except Exception as e:
            err = make_error(_describe(e))
            err.__cause__ = e
            return StageResult(stage, error=err)

    def _absorb(self, err: CalcError, warnings: List[str]) -> None:
        log.warning("chart subsystem degraded (%s): %s", err.stage, err)
        MET_FALLBACKS.labels(stage=err.stage).inc()
        warnings.append(err.to_warning())

    async def _position(self, body: str, instant: datetime) -> StageResult[EclipticCoordinate]:
        return await self._run(
            f"body:{body}",
            lambda msg: BodyCalculationFailed(body, msg),
            self.ephemeris.position(body, instant),
        )

    # ---- derived stages -----------------------------------------------------
    def _houses_and_angles(
        self,
        sidereal: StageResult[float],
        latitude: float,
        warnings: List[str],
    ) -> Tuple[Houses, ChartAngles]:
        if not sidereal.ok:
            assert sidereal.error is not None
            self._absorb(HouseCalculationFailed(f"sidereal time unavailable: {sidereal.error}"), warnings)
            self._absorb(AngleCalculationFailed(f"sidereal time unavailable: {sidereal.error}"), warnings)
            return default_houses(), default_angles()

        st = float(sidereal.value)  # type: ignore[arg-type]
        hs = self.house_system
        try:
            asc = hs.ascendant(st, latitude)
            mc = hs.midheaven(st)
            angles = ChartAngles(
                ascendant=BodyReading.at("Ascendant", asc, house=1),
                descendant=BodyReading.at("Descendant", asc + 180.0, house=7),
                midheaven=BodyReading.at("Midheaven", mc, house=10),
                imum_coeli=BodyReading.at("Imum Coeli", mc + 180.0, house=4),
            )
        except Exception as e:
            self._absorb(AngleCalculationFailed(_describe(e)), warnings)
            angles = default_angles()
            asc = mc = None

        try:
            if asc is None:
                raise ValueError("ascendant unavailable")
            houses = Houses(cusps=tuple(hs.cusps(asc, mc)), system=hs.label)
        except Exception as e:
            self._absorb(HouseCalculationFailed(_describe(e)), warnings)
            houses = default_houses()
        return houses, angles

    def _nodes(self, node: StageResult[LunarNodeEvent], cusps: Sequence[float], warnings: List[str]) -> NodePair:
        if not node.ok:
            assert node.error is not None
            self._absorb(node.error, warnings)
            return default_nodes()
        ev = node.value
        assert ev is not None
        north = normalize_longitude(ev.longitude)
        if self.config.flip_descending_node and not ev.ascending:
            north = normalize_longitude(north + 180.0)
        south = normalize_longitude(north + 180.0)
        return NodePair(
            north_node=BodyReading.at("North Node", north, house=house_for_longitude(north, cusps)),
            south_node=BodyReading.at("South Node", south, house=house_for_longitude(south, cusps)),
        )

    def _points(
        self,
        apsides: Optional[StageResult[Tuple[LunarApsisEvent, ...]]],
        cusps: Sequence[float],
        warnings: List[str],
    ) -> Tuple[BodyReading, ...]:
        if apsides is None:
            return ()
        if not apsides.ok:
            assert apsides.error is not None
            self._absorb(apsides.error, warnings)
            return ()
        names = {"apogee": "Black Moon Lilith", "perigee": "White Moon Selena"}
        out: List[BodyReading] = []
        for ev in apsides.value or ():
            name = names.get(ev.kind)
            if name is None:
                continue
            out.append(BodyReading.at(name, ev.longitude, house=house_for_longitude(ev.longitude, cusps)))
        return tuple(out)

    async def _bodies(
        self,
        positions: Sequence[StageResult[EclipticCoordinate]],
        instant: datetime,
        cusps: Sequence[float],
        warnings: List[str],
    ) -> Tuple[BodyReading, ...]:
        placed: List[Tuple[str, EclipticCoordinate]] = []
        for name, res in zip(self.config.bodies, positions):
            if res.ok and res.value is not None:
                placed.append((name, res.value))
            else:
                assert res.error is not None
                self._absorb(res.error, warnings)

        retro = await self.retrograde_cache.batch_is_retrograde(
            [(name, c.longitude) for name, c in placed], instant
        )
        out: List[BodyReading] = []
        for (name, coord), r in zip(placed, retro):
            if r.error is not None:
                self._absorb(BodyCalculationFailed(name, f"retrograde lookup failed: {r.error}"), warnings)
            out.append(BodyReading.at(
                name,
                coord.longitude,
                latitude=coord.latitude,
                house=house_for_longitude(coord.longitude, cusps),
                retrograde=r.is_retrograde,
            ))
        return tuple(out)

    # ---- public -------------------------------------------------------------
    async def calculate_chart(self, birth_data: BirthData) -> Chart:
        """
        Raises InvalidBirthData for unusable input; every other failure is
        absorbed into a fallback plus an entry in `Chart.warnings`.
        """
        birth = validate_birth_data(birth_data)
        instant = to_utc(birth.instant)
        t0 = time.perf_counter()
        warnings: List[str] = []

        position_tasks = [self._position(b, instant) for b in self.config.bodies]
        sidereal_aw = self._run("sidereal", AngleCalculationFailed, self.ephemeris.sidereal_time(instant))
        node_aw = self._run("nodes", NodeCalculationFailed, self.ephemeris.search_nearest_lunar_node(instant))
        if self.config.additional_points:
            apsis_aw = self._run("points", PointCalculationFailed, self.ephemeris.search_lunar_apsides(instant))
            *positions, sidereal, node, apsides = await asyncio.gather(*position_tasks, sidereal_aw, node_aw, apsis_aw)
        else:
            *positions, sidereal, node = await asyncio.gather(*position_tasks, sidereal_aw, node_aw)
            apsides = None

        houses, angles = self._houses_and_angles(sidereal, float(birth.latitude), warnings)
        cusps = houses.cusps
        bodies = await self._bodies(positions, instant, cusps, warnings)
        nodes = self._nodes(node, cusps, warnings)
        points = self._points(apsides, cusps, warnings)

        scan: List[BodyReading] = list(bodies)
        if self.config.aspect_points:
            scan.extend(angles.as_tuple())
            scan.extend((nodes.north_node, nodes.south_node))
        aspects = detect_aspects(scan, self.config.catalog)

        chart = Chart(
            birth_data=birth,
            bodies=bodies,
            houses=houses,
            aspects=tuple(aspects),
            nodes=nodes,
            angles=angles,
            additional_points=points,
            warnings=tuple(warnings),
        )
        elapsed = time.perf_counter() - t0
        CHART_LATENCY.observe(elapsed)
        MET_CHARTS.labels(outcome="degraded" if chart.degraded else "ok").inc()
        log.info(
            "chart computed: %d bodies, %d aspects, %d warnings in %.3fs",
            len(bodies), len(aspects), len(warnings), elapsed,
        )
        return chart
