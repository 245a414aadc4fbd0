# natalchart/core/constants.py
# -*- coding: utf-8 -*-
"""
Core constants for the chart pipeline.

Single source of truth for:
- canonical bodies and their glyphs
- the zodiac catalog (name, glyph, element, modality)
- the ordered aspect catalog (angle + orb)
- cache/scheduler defaults

Pure-Python, safe to import from any core module. The aspect catalog is a
tuple on purpose: detection walks it in order and stops at the first match.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Tuple

__all__ = [
    "CANONICAL_BODIES", "BODY_SYMBOLS", "POINT_SYMBOLS",
    "ZodiacSign", "ZODIAC_SIGNS",
    "AspectType", "ASPECT_CATALOG", "ASPECT_BY_NAME",
    "SECONDS_PER_DAY", "RETROGRADE_TTL_S", "RETROGRADE_TOLERANCE_DEG",
    "RETROGRADE_MAX_ENTRIES", "DEBOUNCE_S",
    "EQUAL_HOUSE", "EQUAL_HOUSE_DEFAULT",
]

# ── canonical bodies ─────────────────────────────────────────────────────────
CANONICAL_BODIES: Tuple[str, ...] = (
    "Sun", "Moon", "Mercury", "Venus", "Mars",
    "Jupiter", "Saturn", "Uranus", "Neptune", "Pluto",
)

BODY_SYMBOLS: Dict[str, str] = {
    "Sun": "☉", "Moon": "☽", "Mercury": "☿", "Venus": "♀", "Mars": "♂",
    "Jupiter": "♃", "Saturn": "♄", "Uranus": "♅", "Neptune": "♆", "Pluto": "♇",
}

POINT_SYMBOLS: Dict[str, str] = {
    "North Node": "☊",
    "South Node": "☋",
    "Ascendant": "ASC",
    "Descendant": "DSC",
    "Midheaven": "MC",
    "Imum Coeli": "IC",
    "Black Moon Lilith": "⚸",
    "White Moon Selena": "⊙",
}

# ── zodiac ───────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ZodiacSign:
    name: str
    symbol: str
    element: str
    modality: str


ZODIAC_SIGNS: Tuple[ZodiacSign, ...] = (
    ZodiacSign("Aries", "♈", "Fire", "Cardinal"),
    ZodiacSign("Taurus", "♉", "Earth", "Fixed"),
    ZodiacSign("Gemini", "♊", "Air", "Mutable"),
    ZodiacSign("Cancer", "♋", "Water", "Cardinal"),
    ZodiacSign("Leo", "♌", "Fire", "Fixed"),
    ZodiacSign("Virgo", "♍", "Earth", "Mutable"),
    ZodiacSign("Libra", "♎", "Air", "Cardinal"),
    ZodiacSign("Scorpio", "♏", "Water", "Fixed"),
    ZodiacSign("Sagittarius", "♐", "Fire", "Mutable"),
    ZodiacSign("Capricorn", "♑", "Earth", "Cardinal"),
    ZodiacSign("Aquarius", "♒", "Air", "Fixed"),
    ZodiacSign("Pisces", "♓", "Water", "Mutable"),
)

# ── aspects (ORDER MATTERS: first match wins) ─────────────────────────────────
@dataclass(frozen=True)
class AspectType:
    name: str
    angle: float
    orb: float
    symbol: str


ASPECT_CATALOG: Tuple[AspectType, ...] = (
    AspectType("Conjunction", 0.0, 8.0, "☌"),
    AspectType("Opposition", 180.0, 8.0, "☍"),
    AspectType("Trine", 120.0, 6.0, "△"),
    AspectType("Square", 90.0, 6.0, "□"),
    AspectType("Sextile", 60.0, 4.0, "⚹"),
    AspectType("Quintile", 72.0, 2.0, "Q"),
    AspectType("SemiSquare", 45.0, 2.0, "∠"),
    AspectType("Sesquiquadrate", 135.0, 2.0, "⚼"),
)

ASPECT_BY_NAME: Dict[str, AspectType] = {a.name: a for a in ASPECT_CATALOG}

# ── caches / scheduling ──────────────────────────────────────────────────────
SECONDS_PER_DAY: float = 86400.0
RETROGRADE_TTL_S: float = SECONDS_PER_DAY      # 24 h
RETROGRADE_TOLERANCE_DEG: float = 0.1
RETROGRADE_MAX_ENTRIES: int = 1000
DEBOUNCE_S: float = 0.3

# ── house labels ─────────────────────────────────────────────────────────────
EQUAL_HOUSE: str = "Equal House"
EQUAL_HOUSE_DEFAULT: str = "Equal House (Default)"
