# tests/test_models.py
from __future__ import annotations

import dataclasses
import math
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from hypothesis import given, strategies as st

from natalchart.core.models import (
    BirthData,
    BodyReading,
    Houses,
    epoch_ms,
    hour_bucket,
    normalize_longitude,
    to_utc,
    zodiac_sign,
)

finite_angles = st.floats(min_value=-1e6, max_value=1e6, allow_nan=False, allow_infinity=False)


@given(finite_angles)
def test_normalize_longitude_range(x):
    v = normalize_longitude(x)
    assert 0.0 <= v < 360.0


@given(finite_angles)
def test_normalize_longitude_is_idempotent(x):
    v = normalize_longitude(x)
    assert normalize_longitude(v) == pytest.approx(v, abs=1e-9)


def test_normalize_tiny_negative_is_zero():
    assert normalize_longitude(-1e-20) == 0.0
    assert normalize_longitude(360.0) == 0.0
    assert normalize_longitude(-90.0) == pytest.approx(270.0)


@given(st.floats(min_value=0.0, max_value=359.999999, allow_nan=False))
def test_sign_degree_within_sign(lon):
    sign, deg = zodiac_sign(lon)
    assert 0.0 <= deg < 30.0
    assert sign.name == zodiac_sign(math.floor(lon / 30.0) * 30.0 + 0.5)[0].name


def test_sign_boundaries():
    assert zodiac_sign(0.0)[0].name == "Aries"
    assert zodiac_sign(29.999)[0].name == "Aries"
    assert zodiac_sign(30.0)[0].name == "Taurus"
    assert zodiac_sign(359.99)[0].name == "Pisces"
    assert zodiac_sign(180.0)[0].name == "Libra"


def test_sign_catalog_carries_element_and_modality():
    leo, _ = zodiac_sign(125.0)
    assert leo.name == "Leo"
    assert leo.element == "Fire"
    assert leo.modality == "Fixed"


def test_body_reading_at_normalizes_and_derives_sign():
    r = BodyReading.at("Mars", 725.5, house=3, retrograde=True)
    assert r.longitude == pytest.approx(5.5)
    assert r.sign == "Aries"
    assert r.sign_degree == pytest.approx(5.5)
    assert r.symbol == "♂"
    assert r.house == 3 and r.retrograde is True


def test_body_reading_is_frozen():
    r = BodyReading.at("Sun", 10.0)
    with pytest.raises(dataclasses.FrozenInstanceError):
        r.longitude = 20.0  # type: ignore[misc]
    assert r.with_house(5).house == 5
    assert r.house == 1


def test_houses_need_twelve_cusps():
    with pytest.raises(ValueError):
        Houses(cusps=(0.0, 30.0), system="Equal House")
    assert len(Houses(cusps=tuple(float(30 * i) for i in range(12)), system="x").cusps) == 12


def test_to_utc_rejects_naive():
    with pytest.raises(ValueError):
        to_utc(datetime(2020, 1, 1, 12, 0))


def test_hour_bucket_truncates_in_utc():
    ny = ZoneInfo("America/New_York")
    a = datetime(1990, 7, 15, 14, 5, tzinfo=ny)
    b = datetime(1990, 7, 15, 14, 55, 59, tzinfo=ny)
    assert hour_bucket(a) == hour_bucket(b) == "1990-07-15T18:00:00+00:00"
    assert hour_bucket(a + timedelta(hours=1)) != hour_bucket(a)


def test_epoch_ms_is_zone_independent():
    utc = datetime(2001, 2, 3, 4, 5, 6, 789000, tzinfo=timezone.utc)
    local = utc.astimezone(ZoneInfo("Asia/Kolkata"))
    assert epoch_ms(utc) == epoch_ms(local) == 981173106789


def test_birth_data_observer():
    b = BirthData(datetime(2000, 1, 1, tzinfo=timezone.utc), 10.0, 20.0, elevation_m=5.0)
    assert b.observer.latitude == 10.0
    assert b.observer.elevation_m == 5.0
    assert b.as_dict()["instant"] == "2000-01-01T00:00:00+00:00"
