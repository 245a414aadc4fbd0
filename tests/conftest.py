# tests/conftest.py
from __future__ import annotations

"""
Pytest configuration for the natalchart suite.

- Registers Hypothesis profiles for local dev and CI.
- Freezes the process TZ to UTC (we always pass aware datetimes explicitly).
- Provides an in-memory ephemeris with call counters so cache behaviour can be
  asserted without a JPL kernel.
"""

import asyncio
import os
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

import pytest
from hypothesis import settings, HealthCheck

from natalchart.core.ephemeris_adapter import EphemerisError, canonical_body
from natalchart.core.models import (
    EclipticCoordinate,
    LunarApsisEvent,
    LunarNodeEvent,
    normalize_longitude,
    to_utc,
)


# ──────────────────────────────────────────────────────────────────────────────
# Hypothesis profiles
# ──────────────────────────────────────────────────────────────────────────────
settings.register_profile(
    "dev",
    settings(
        deadline=None,           # avoid flaky timeouts on slower runners
        max_examples=60,         # fast local runs
        suppress_health_check=[HealthCheck.too_slow],
    ),
)
settings.register_profile(
    "ci",
    settings(
        deadline=None,
        max_examples=120,        # a bit more coverage in CI
        suppress_health_check=[HealthCheck.too_slow],
    ),
)

_profile = (
    "ci"
    if (os.getenv("CI") or os.getenv("GITHUB_ACTIONS"))
    else os.getenv("HYPOTHESIS_PROFILE", "dev")
)
settings.load_profile(_profile)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "slow: mark test as slow")
    config.addinivalue_line("markers", "kernel: needs Skyfield and a JPL kernel on disk")
    config.addinivalue_line("filterwarnings", "ignore::DeprecationWarning")


def pytest_report_header(config: pytest.Config) -> str:
    return f"Hypothesis profile: '{_profile}'"


# ──────────────────────────────────────────────────────────────────────────────
# Global fixtures
# ──────────────────────────────────────────────────────────────────────────────

@pytest.fixture(scope="session", autouse=True)
def freeze_tz_env():
    prev = os.environ.get("TZ")
    os.environ["TZ"] = "UTC"
    try:
        yield
    finally:
        if prev is None:
            os.environ.pop("TZ", None)
        else:
            os.environ["TZ"] = prev


# ──────────────────────────────────────────────────────────────────────────────
# In-memory ephemeris
# ──────────────────────────────────────────────────────────────────────────────

EPOCH = datetime(2000, 1, 1, 12, 0, tzinfo=timezone.utc)

BASE_LON: Dict[str, float] = {
    "Sun": 10.0, "Moon": 20.0, "Mercury": 30.0, "Venus": 40.0, "Mars": 50.0,
    "Jupiter": 60.0, "Saturn": 70.0, "Uranus": 80.0, "Neptune": 90.0, "Pluto": 100.0,
}
# deg/day; Mars runs backwards so there is always one retrograde body
BASE_SPD: Dict[str, float] = {
    "Sun": 0.9856, "Moon": 13.1764, "Mercury": 1.2, "Venus": 1.0, "Mars": -0.3,
    "Jupiter": 0.08, "Saturn": 0.03, "Uranus": 0.01, "Neptune": 0.006, "Pluto": 0.004,
}


class FakeEphemeris:
    """Linear-motion ephemeris. Every call is counted in `calls`."""

    def __init__(
        self,
        *,
        base: Optional[Dict[str, float]] = None,
        speeds: Optional[Dict[str, float]] = None,
        fail_bodies: Iterable[str] = (),
        fail_sidereal: bool = False,
        fail_nodes: bool = False,
        fail_apsides: bool = False,
        sidereal_deg: float = 100.0,
        node_longitude: float = 125.0,
        node_ascending: bool = True,
        delay: float = 0.0,
    ):
        self.base = dict(base or BASE_LON)
        self.speeds = dict(speeds or BASE_SPD)
        self.fail_bodies = set(fail_bodies)
        self.fail_sidereal = fail_sidereal
        self.fail_nodes = fail_nodes
        self.fail_apsides = fail_apsides
        self.sidereal_deg = sidereal_deg
        self.node_longitude = node_longitude
        self.node_ascending = node_ascending
        self.delay = delay
        self.calls: Counter = Counter()

    @property
    def total_calls(self) -> int:
        return sum(v for k, v in self.calls.items() if ":" not in k)

    async def _tick(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    def longitude_at(self, name: str, instant: datetime) -> float:
        days = (to_utc(instant) - EPOCH).total_seconds() / 86400.0
        return normalize_longitude(self.base[name] + self.speeds[name] * days)

    async def position(self, body: str, instant: datetime) -> EclipticCoordinate:
        name = canonical_body(body)
        self.calls["position"] += 1
        self.calls[f"position:{name}"] += 1
        await self._tick()
        if name in self.fail_bodies:
            raise EphemerisError("compute", f"position failed for {name}")
        return EclipticCoordinate(self.longitude_at(name, instant), 0.0)

    async def sidereal_time(self, instant: datetime) -> float:
        self.calls["sidereal"] += 1
        await self._tick()
        if self.fail_sidereal:
            raise EphemerisError("compute", "sidereal time failed")
        return self.sidereal_deg

    async def search_nearest_lunar_node(self, instant: datetime) -> LunarNodeEvent:
        self.calls["nodes"] += 1
        await self._tick()
        if self.fail_nodes:
            raise EphemerisError("search", "no lunar node inside search window")
        return LunarNodeEvent(to_utc(instant), self.node_longitude, self.node_ascending)

    async def search_lunar_apsides(self, instant: datetime):
        self.calls["apsides"] += 1
        await self._tick()
        if self.fail_apsides:
            raise EphemerisError("search", "lunar apogee search failed")
        t = to_utc(instant)
        return (
            LunarApsisEvent(t - timedelta(days=3), 200.0, "apogee"),
            LunarApsisEvent(t + timedelta(days=11), 20.0, "perigee"),
        )


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_ephemeris():
    return FakeEphemeris


@pytest.fixture
def fake_ephemeris() -> FakeEphemeris:
    return FakeEphemeris()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def nyc_birth():
    from natalchart.core.validators import birth_data_from_local
    return birth_data_from_local("1990-07-15", "14:30", "America/New_York", 40.7128, -74.0060)
