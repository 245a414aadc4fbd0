# natalchart/core/aspects.py
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence
import itertools

from natalchart.core.constants import ASPECT_CATALOG, AspectType
from natalchart.core.models import Aspect, BodyReading, normalize_longitude

__all__ = [
    "separation",
    "match_aspect",
    "detect_aspects",
]

# ─────────────────────────────────────────────────────────────────────────────
# Core math helpers
# ─────────────────────────────────────────────────────────────────────────────

def separation(a: float, b: float) -> float:
    """Smallest separation on circle in [0, 180]."""
    d = abs(normalize_longitude(a) - normalize_longitude(b))
    return min(d, 360.0 - d)

def match_aspect(sep: float, catalog: Sequence[AspectType] = ASPECT_CATALOG) -> Optional[AspectType]:
    """
    First catalog entry whose orb covers `sep`.

    Catalog order decides ties, not tightness: 91° with Square(90, 6) listed
    before Quintile and friends is a Square even if a later entry were closer.
    """
    for asp in catalog:
        if abs(sep - asp.angle) <= asp.orb:
            return asp
    return None

# ─────────────────────────────────────────────────────────────────────────────
# PURE geometry API
# ─────────────────────────────────────────────────────────────────────────────

def detect_aspects(
    bodies: Iterable[BodyReading],
    catalog: Sequence[AspectType] = ASPECT_CATALOG,
) -> List[Aspect]:
    """At most one aspect per unordered pair, pairs in input order (i < j)."""
    out: List[Aspect] = []
    for b1, b2 in itertools.combinations(list(bodies), 2):
        sep = separation(b1.longitude, b2.longitude)
        hit = match_aspect(sep, catalog)
        if hit is None:
            continue
        out.append(Aspect(
            body1=b1.name,
            body2=b2.name,
            type=hit.name,
            orb=abs(sep - hit.angle),
            angle=sep,
        ))
    return out
