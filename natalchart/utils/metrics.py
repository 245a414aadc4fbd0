from __future__ import annotations
from typing import Final

from prometheus_client import Counter, Gauge, Histogram

# Keep names stable: dashboards key on them.
MET_REQUESTS: Final = Counter("natal_api_requests_total", "API requests", ["route"])
MET_CHARTS: Final = Counter("natal_chart_computations_total", "Chart computations", ["outcome"])
MET_CHART_CACHE: Final = Counter("natal_chart_cache_total", "Chart cache lookups and commits", ["result"])
MET_RETRO_CACHE: Final = Counter("natal_retrograde_cache_total", "Retrograde cache lookups", ["result"])
MET_FALLBACKS: Final = Counter("natal_subsystem_fallback_total", "Absorbed subsystem failures", ["stage"])
GAUGE_APP_UP: Final = Gauge("natal_app_up", "1 if app is running")
CHART_LATENCY: Final = Histogram("natal_chart_compute_seconds", "Chart computation latency")
REQ_LATENCY: Final = Histogram("natal_request_seconds", "API request latency", ["route"])
