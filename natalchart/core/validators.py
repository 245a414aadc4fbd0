# natalchart/core/validators.py
from __future__ import annotations

import math
import re
from datetime import datetime, date
from typing import Any, Dict, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from natalchart.core.models import BirthData

__all__ = [
    "ValidationError",
    "InvalidBirthData",
    "validate_birth_data",
    "parse_date",
    "parse_time_str",
    "parse_latlon",
    "birth_data_from_local",
]

# ───────────────────────── errors ─────────────────────────

class ValidationError(ValueError):
    """Structured validator error (has .errors() like pydantic)."""
    def __init__(self, details: Union[str, Dict[str, Any], List[Dict[str, Any]]]):
        if isinstance(details, str):
            self._details = [{"loc": [], "msg": details, "type": "value_error"}]
            super().__init__(details)
        elif isinstance(details, dict):
            self._details = [details]
            super().__init__(details.get("msg", "validation_error"))
        elif isinstance(details, list):
            self._details = details
            super().__init__(self._details[0]["msg"] if self._details else "validation_error")
        else:
            self._details = [{"loc": [], "msg": "validation_error", "type": "value_error"}]
            super().__init__("validation_error")

    def errors(self) -> List[Dict[str, Any]]:
        return list(self._details)


class InvalidBirthData(ValidationError):
    """Birth data that must be rejected before any ephemeris work starts."""


# ───────────────────────── helpers ─────────────────────────

def _err(loc: List[str] | str, msg: str, typ: str = "value_error") -> Dict[str, Any]:
    return {"loc": [loc] if isinstance(loc, str) else loc, "msg": msg, "type": typ}

def _as_float(v: Any) -> Optional[float]:
    if isinstance(v, bool):
        return None
    try:
        if v is None:
            return None
        x = float(v)
    except (TypeError, ValueError):
        return None
    return x if math.isfinite(x) else None

def _validate_iana_tz(tz: str, loc: Optional[List[str]] = None) -> ZoneInfo:
    try:
        return ZoneInfo(tz)
    except Exception:
        raise InvalidBirthData([{
            "loc": loc or ["place_tz"],
            "msg": "must be a valid IANA zone like 'America/New_York'",
            "type": "value_error",
        }])


# ───────────────────────── atomic parsers ─────────────────────────

_TIME_RE = re.compile(r"^\s*(?P<h>\d{1,2}):(?P<m>\d{2})(?::(?P<s>\d{2})(?:\.(?P<f>\d+))?)?\s*$")

def _parse_hms(s: str) -> Tuple[int, int, int, int]:
    """
    Accept 'HH:MM', 'HH:MM:SS', or 'HH:MM:SS.frac'. Return (h, m, s, microsecond).
    Leap seconds are not representable in `datetime`, so SS must be < 60.
    """
    m = _TIME_RE.match(s or "")
    if not m:
        raise InvalidBirthData(_err("time", "time must be 'HH:MM' or 'HH:MM:SS[.frac]'", "value_error.time"))
    hh = int(m.group("h")); mm = int(m.group("m")); ss = int(m.group("s") or 0)
    frac = "".join(ch for ch in (m.group("f") or "") if ch.isdigit())
    if not (0 <= hh <= 23 and 0 <= mm <= 59 and 0 <= ss <= 59):
        raise InvalidBirthData(_err("time", "time fields out of range", "value_error.time"))
    micro = int((frac + "000000")[:6]) if frac else 0
    return hh, mm, ss, micro

def parse_date(s: str) -> date:
    try:
        return datetime.strptime(s, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise InvalidBirthData(_err("date", "date must be 'YYYY-MM-DD'", "value_error.date"))

def parse_time_str(s: str) -> str:
    hh, mm, ss, micro = _parse_hms(s)
    base = f"{hh:02d}:{mm:02d}:{ss:02d}"
    return base + (f".{micro:06d}" if micro else "")

def parse_latlon(
    lat: Any, lon: Any, lat_key="latitude", lon_key="longitude", *, check_range: bool = True
) -> Tuple[float, float]:
    lat_f = _as_float(lat); lon_f = _as_float(lon)
    if lat_f is None or lon_f is None:
        raise InvalidBirthData(_err([lat_key, lon_key], "latitude/longitude must be finite numbers", "type_error.float"))
    if not check_range:
        return float(lat_f), float(lon_f)
    if not (-90.0 <= lat_f <= 90.0):
        raise InvalidBirthData(_err(lat_key, "latitude must be between -90 and 90"))
    if not (-180.0 <= lon_f <= 180.0):
        raise InvalidBirthData(_err(lon_key, "longitude must be between -180 and 180"))
    return float(lat_f), float(lon_f)


# ───────────────────────── composite validators ─────────────────────────

def validate_birth_data(birth: Any) -> BirthData:
    """
    Fail fast on unusable input. Returns the same BirthData when valid.

    Rejects: non-BirthData objects, non-datetime or naive instants,
    non-finite coordinates, non-finite elevation. Geographic ranges are
    checked where civil input is parsed, in `birth_data_from_local`.
    """
    if not isinstance(birth, BirthData):
        raise InvalidBirthData(_err([], f"expected BirthData, got {type(birth).__name__}", "type_error"))
    inst = birth.instant
    if not isinstance(inst, datetime):
        raise InvalidBirthData(_err("instant", "instant must be a datetime", "type_error.datetime"))
    if inst.tzinfo is None or inst.utcoffset() is None:
        raise InvalidBirthData(_err("instant", "instant must be timezone-aware", "value_error.naive_datetime"))
    parse_latlon(birth.latitude, birth.longitude, check_range=False)
    if _as_float(birth.elevation_m) is None:
        raise InvalidBirthData(_err("elevation_m", "elevation must be a finite number", "type_error.float"))
    return birth


def birth_data_from_local(
    date_str: str,
    time_str: str,
    place_tz: str,
    latitude: Any,
    longitude: Any,
    *,
    name: Optional[str] = None,
    elevation_m: Any = 0.0,
) -> BirthData:
    """Civil date/time in an IANA zone → validated BirthData."""
    d = parse_date(date_str)
    hh, mm, ss, micro = _parse_hms(time_str)
    zone = _validate_iana_tz(place_tz)
    lat, lon = parse_latlon(latitude, longitude)
    elev = _as_float(elevation_m if elevation_m is not None else 0.0)
    if elev is None:
        raise InvalidBirthData(_err("elevation_m", "elevation must be a finite number", "type_error.float"))
    inst = datetime(d.year, d.month, d.day, hh, mm, ss, micro, tzinfo=zone)
    return validate_birth_data(BirthData(inst, lat, lon, name=name or None, elevation_m=elev))
