"""
director.config — YAML Configuration Loader
============================================

This module reads ``config.yaml`` for **host-process** settings: which
session the background process drives, where the local snapshot cache
lives, and the default game settings served to the engine when the host
platform has none stored.

Game tuning itself (goal, margins, durations) is normalized by
:mod:`director.engine.settings`; the HTTP service reads its own settings
from environment variables (see :mod:`director.api.deps`).

Usage::

    from director.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.session_id)        # "demo_room"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class HostConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity of the model/room this process directs
    session_id: str

    # Local snapshot cache (best-effort JSON file)
    local_state_path: str = ".director/state.json"

    # Root log level for the host process
    log_level: str = "INFO"

    # Raw game settings block, normalized later by normalize_settings()
    settings: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HostConfig:
    """Read *path* and return a :class:`HostConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If ``session_id`` is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    settings = raw.get("settings") or {}
    if not isinstance(settings, dict):
        settings = {}

    return HostConfig(
        session_id=str(raw["session_id"]),
        local_state_path=str(raw.get("local_state_path") or ".director/state.json"),
        log_level=str(raw.get("log_level") or "INFO").upper(),
        settings=settings,
    )
