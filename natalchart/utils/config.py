# natalchart/utils/config.py
import os
import copy
import yaml

from natalchart.core.constants import (
    DEBOUNCE_S,
    RETROGRADE_MAX_ENTRIES,
    RETROGRADE_TOLERANCE_DEG,
    RETROGRADE_TTL_S,
)

class AttrDict(dict):
    """Dict that also supports attribute access: cfg.retrograde and cfg['retrograde'] both work."""
    def __getattr__(self, item):
        try:
            return self[item]
        except KeyError as e:
            raise AttributeError(item) from e
    def __setattr__(self, key, value):
        self[key] = value

def _to_attr(obj):
    if isinstance(obj, dict):
        return AttrDict({k: _to_attr(v) for k, v in obj.items()})
    if isinstance(obj, list):
        return [_to_attr(x) for x in obj]
    return obj

DEFAULTS = {
    "retrograde": {
        "ttl_s": RETROGRADE_TTL_S,
        "tolerance_deg": RETROGRADE_TOLERANCE_DEG,
        "max_entries": RETROGRADE_MAX_ENTRIES,
    },
    "scheduler": {"debounce_s": DEBOUNCE_S},
    "aspects": {"include_points": False},
    "ephemeris": {"path": None, "download": False},
}

# env var -> (section, key, caster)
_TRUTHY = ("1", "true", "yes", "on")
_ENV_OVERRIDES = {
    "NATAL_RETRO_TTL_S": ("retrograde", "ttl_s", float),
    "NATAL_RETRO_TOLERANCE_DEG": ("retrograde", "tolerance_deg", float),
    "NATAL_RETRO_MAX_ENTRIES": ("retrograde", "max_entries", int),
    "NATAL_DEBOUNCE_S": ("scheduler", "debounce_s", float),
    "NATAL_ASPECT_POINTS": ("aspects", "include_points", lambda v: v.lower() in _TRUTHY),
    "NATAL_EPHEMERIS": ("ephemeris", "path", str),
    "NATAL_EPHEMERIS_DOWNLOAD": ("ephemeris", "download", lambda v: v.lower() in _TRUTHY),
}

def _merge(base, extra):
    for k, v in (extra or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _merge(base[k], v)
        else:
            base[k] = v
    return base

def load_settings(path: str = None):
    """
    Defaults, then YAML from `path` (or $NATAL_CONFIG), then env overrides:
      - NATAL_RETRO_TTL_S / NATAL_RETRO_TOLERANCE_DEG / NATAL_RETRO_MAX_ENTRIES
      - NATAL_DEBOUNCE_S
      - NATAL_ASPECT_POINTS
      - NATAL_EPHEMERIS / NATAL_EPHEMERIS_DOWNLOAD
    Returns an AttrDict for convenient access.
    """
    data = copy.deepcopy(DEFAULTS)

    path = path or os.getenv("NATAL_CONFIG")
    if path:
        with open(path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"config file {path} must contain a mapping")
        _merge(data, loaded)

    for env, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = os.getenv(env)
        if raw:
            try:
                data[section][key] = cast(raw)
            except ValueError as e:
                raise ValueError(f"invalid value for {env}: {raw!r}") from e

    return _to_attr(data)
