"""
director.services.tip_menu_lookup — Public Profile Tip-Menu Lookup
===================================================================

Best-effort fetch of a performer's public tip menu from the streaming
platform's front API.  Candidate origins, in order:

  1. the ``host`` query parameter,
  2. ``TIP_MENU_ORIGINS`` (comma-separated),
  3. :data:`DEFAULT_ORIGINS`.

Each candidate is normalized to ``scheme://host[:port]`` and must belong
to an allowed platform domain.  The first origin returning a non-empty menu
wins; otherwise the first one that answered with any menu at all;
otherwise the lookup fails with :class:`TipMenuUnavailable`.
"""

from __future__ import annotations

import logging
import math
import os
import re
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlsplit

import httpx

from director.constants import to_number

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_.-]{2,64}$")
ALLOWED_HOST_RE = re.compile(r"(^|\.)stripchat\.(com|dev|local)$", re.IGNORECASE)
DEFAULT_ORIGINS = ("https://stripchat.dev", "https://stripchat.com")
REQUEST_TIMEOUT_SEC = 5.0

_TITLE_KEYS = ("activity", "title", "name")
_PRICE_KEYS = ("price", "tokens", "amount")


class TipMenuUnavailable(Exception):
    """No candidate origin returned a usable tip menu."""


@dataclass(frozen=True, slots=True)
class LookupResult:
    source: str
    tip_menu: dict[str, Any]


def normalize_origin(value: Any) -> str | None:
    """``scheme://host[:port]`` for an allowed host, else None."""
    text = str(value or "").strip()
    if not text:
        return None
    if not text.startswith(("http://", "https://")):
        text = f"https://{text}"

    try:
        parts = urlsplit(text)
        port = parts.port
    except ValueError:
        return None

    hostname = (parts.hostname or "").lower()
    if parts.scheme not in ("http", "https") or not hostname:
        return None
    if not ALLOWED_HOST_RE.search(hostname):
        return None
    return f"{parts.scheme}://{hostname}{f':{port}' if port else ''}"


def candidate_origins(host: str | None = None) -> list[str]:
    configured = [
        item.strip() for item in os.getenv("TIP_MENU_ORIGINS", "").split(",") if item.strip()
    ]
    origins: list[str] = []
    for value in (host, *configured, *DEFAULT_ORIGINS):
        origin = normalize_origin(value)
        if origin and origin not in origins:
            origins.append(origin)
    return origins


def _first_present(raw: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def normalize_menu_settings(settings: Any) -> list[dict[str, Any]]:
    """Reduce raw profile items to ``{activity, price}`` pairs."""
    if not isinstance(settings, list):
        return []

    items = []
    for raw in settings:
        if not isinstance(raw, dict):
            continue
        activity = str(_first_present(raw, _TITLE_KEYS) or "").strip()
        price = to_number(_first_present(raw, _PRICE_KEYS))
        price = max(0, math.floor(price)) if price is not None else 0
        if activity and price:
            items.append({"activity": activity, "price": price})
    return items


async def fetch_from_origin(
    client: httpx.AsyncClient, origin: str, username: str
) -> dict[str, Any] | None:
    """One origin's menu, or None on any failure."""
    url = f"{origin}/api/front/v2/models/username/{quote(username, safe='')}/cam"
    try:
        resp = await client.get(url, headers={"accept": "application/json"})
    except httpx.HTTPError:
        logger.debug("Tip menu fetch failed for %s", origin, exc_info=True)
        return None
    if not resp.is_success:
        return None

    try:
        payload = resp.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    cam = payload.get("cam")
    tip_menu = cam.get("tipMenu") if isinstance(cam, dict) else None
    if tip_menu is None:
        tip_menu = payload.get("tipMenu")
    if not isinstance(tip_menu, dict):
        return None

    settings = normalize_menu_settings(tip_menu.get("settings"))
    is_enabled = tip_menu.get("isEnabled")
    return {
        "isEnabled": bool(is_enabled if is_enabled is not None else settings),
        "settings": settings,
        "updatedAt": int(time.time() * 1000),
    }


async def lookup_tip_menu(
    username: str,
    host: str | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LookupResult:
    """Walk the candidate origins and return the best menu found.

    Raises
    ------
    ValueError
        If *username* is malformed or no origin is allowed.
    TipMenuUnavailable
        If every origin failed.
    """
    username = (username or "").strip()
    if not USERNAME_RE.match(username):
        raise ValueError("Invalid username")

    origins = candidate_origins(host)
    if not origins:
        raise ValueError("No allowed host provided")

    first_answer: LookupResult | None = None
    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SEC, transport=transport) as client:
        for origin in origins:
            tip_menu = await fetch_from_origin(client, origin, username)
            if tip_menu is None:
                continue
            result = LookupResult(source=origin, tip_menu=tip_menu)
            if tip_menu["settings"]:
                return result
            if first_answer is None:
                first_answer = result

    if first_answer is not None:
        return first_answer
    raise TipMenuUnavailable("Tip menu unavailable")
