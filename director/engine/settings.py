"""
director.engine.settings — Settings Normalizer
===============================================

Turns whatever the host settings API returns into a fully-populated,
bounded :class:`DirectorSettings`.  Never raises: missing or invalid input
always yields the defaults, and normalizing an already-normalized record
is a no-op.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from director.constants import to_number

__all__ = ["DEFAULT_SETTINGS", "NUMERIC_BOUNDS", "DirectorSettings", "normalize_settings"]


@dataclass(frozen=True, slots=True)
class DirectorSettings:
    """Game tuning for one session load."""

    preproduction_goal: int = 50
    overtake_margin: int = 10
    min_tenure_sec: int = 15
    command_duration_sec: int = 20
    command_cooldown_sec: int = 6
    tip_menu_refresh_sec: int = 20
    fallback_tip_menu: str = "Close-up|25\nDance|40\nEye contact|30"
    backend_url: str = ""
    backend_api_key: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Wire (camelCase) representation, as stored by the host platform."""
        return {
            "preproductionGoal": self.preproduction_goal,
            "overtakeMargin": self.overtake_margin,
            "minTenureSec": self.min_tenure_sec,
            "commandDurationSec": self.command_duration_sec,
            "commandCooldownSec": self.command_cooldown_sec,
            "tipMenuRefreshSec": self.tip_menu_refresh_sec,
            "fallbackTipMenu": self.fallback_tip_menu,
            "backendUrl": self.backend_url,
            "backendApiKey": self.backend_api_key,
        }


DEFAULT_SETTINGS = DirectorSettings()

# wire key → (attribute, min, max)
NUMERIC_BOUNDS: dict[str, tuple[str, int, int]] = {
    "preproductionGoal": ("preproduction_goal", 10, 10000),
    "overtakeMargin": ("overtake_margin", 1, 1000),
    "minTenureSec": ("min_tenure_sec", 5, 600),
    "commandDurationSec": ("command_duration_sec", 5, 300),
    "commandCooldownSec": ("command_cooldown_sec", 1, 120),
    "tipMenuRefreshSec": ("tip_menu_refresh_sec", 5, 300),
}

_STRING_FIELDS: dict[str, str] = {
    "fallbackTipMenu": "fallback_tip_menu",
    "backendUrl": "backend_url",
    "backendApiKey": "backend_api_key",
}


def _clamp_int(value: Any, default: int, lo: int, hi: int) -> int:
    num = to_number(value)
    if num is None or num < lo:
        return default
    if num > hi:
        return hi
    return int(math.floor(num))


def _clean_str(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value).strip() or default


def normalize_settings(raw: Mapping[str, Any] | None = None) -> DirectorSettings:
    """Return a bounded :class:`DirectorSettings` built from *raw*.

    Numbers below their minimum fall back to the default, numbers above
    their maximum are clamped to it, everything else is floored.  Blank
    strings fall back to their defaults.
    """
    if not isinstance(raw, Mapping):
        raw = {}

    values: dict[str, Any] = {}
    for key, (attr, lo, hi) in NUMERIC_BOUNDS.items():
        values[attr] = _clamp_int(raw.get(key), getattr(DEFAULT_SETTINGS, attr), lo, hi)
    for key, attr in _STRING_FIELDS.items():
        values[attr] = _clean_str(raw.get(key), getattr(DEFAULT_SETTINGS, attr))

    return DirectorSettings(**values)
