"""
director.constants — Shared Constants & Helpers
================================================

Single source of truth for the command catalog, collection capacities and
the small text helpers shared by the engine, the services and the API.
"""

from __future__ import annotations

import math
import re
from typing import Any

# ---------------------------------------------------------------------------
# Command catalog, grouped the way the control panel renders it
# ---------------------------------------------------------------------------
COMMAND_GROUPS: list[dict[str, Any]] = [
    {
        "id": "visual",
        "title": "VISUAL",
        "commands": [
            {"id": "visual_closeup", "label": "Close-up"},
            {"id": "visual_angle", "label": "New angle"},
            {"id": "visual_eyes", "label": "Eye contact"},
        ],
    },
    {
        "id": "tempo",
        "title": "TEMPO",
        "commands": [
            {"id": "tempo_slow", "label": "Slow down"},
            {"id": "tempo_turbo", "label": "Turbo"},
            {"id": "tempo_freeze", "label": "Freeze"},
        ],
    },
    {
        "id": "sound",
        "title": "SOUND",
        "commands": [
            {"id": "sound_whisper", "label": "Whisper"},
            {"id": "sound_narrate", "label": "Narrate"},
            {"id": "sound_silence", "label": "Silence"},
        ],
    },
    {
        "id": "acting",
        "title": "ACTING",
        "commands": [
            {"id": "acting_sweet", "label": "Sweet"},
            {"id": "acting_sassy", "label": "Sassy"},
        ],
    },
]

COMMAND_BY_ID: dict[str, dict[str, str]] = {
    command["id"]: {
        **command,
        "categoryId": group["id"],
        "categoryTitle": group["title"],
    }
    for group in COMMAND_GROUPS
    for command in group["commands"]
}

# ---------------------------------------------------------------------------
# Capacities
# ---------------------------------------------------------------------------
QUEUE_CAPACITY = 40
HISTORY_CAPACITY = 25
ACTIVITY_CAPACITY = 30
ACTIVITY_BROADCAST_LIMIT = 20

USER_NAME_MAX = 60
ACTIVITY_TEXT_MAX = 180
MENU_TITLE_MAX = 80
LABEL_MAX = 80
ID_MAX = 64

DIRECTOR_PLACEHOLDER = "Casting..."
CHALLENGER_PLACEHOLDER = "None"

# ---------------------------------------------------------------------------
# Text / number helpers
# ---------------------------------------------------------------------------
_SLUG_RE = re.compile(r"[^a-z0-9_]+")
_SESSION_ID_STRIP_RE = re.compile(r"[^a-zA-Z0-9_-]")
SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def slugify(value: Any, fallback: str) -> str:
    """Lower-case ASCII slug capped at 64 chars, or *fallback* when empty."""
    slug = _SLUG_RE.sub("_", str(value or "").lower()).strip("_")[:ID_MAX]
    return slug or fallback


def sanitize_session_id(value: Any) -> str:
    """Strip everything outside ``[A-Za-z0-9_-]`` and cap at 64 chars."""
    return _SESSION_ID_STRIP_RE.sub("", str(value or "").strip())[:ID_MAX]


def to_number(value: Any) -> float | None:
    """Coerce *value* to a finite float, or None.  Booleans are rejected."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num):
        return None
    return num


def non_negative_int(value: Any, default: int = 0) -> int:
    """Floor *value* to an int ≥ 0; unusable input yields *default*."""
    num = to_number(value)
    if num is None or num < 0:
        return default
    return int(math.floor(num))

