"""
director.engine.tip_menu — Tip-Menu Normalizer
===============================================

Converts an external tip-menu payload (host SDK or the remote-profile
lookup) or the textual fallback spec into a canonical, ordered list of
priced :class:`MenuItem` objects with stable identifiers.

Identifiers are derived deterministically, so normalizing the same payload
twice yields the same ids.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from director.constants import ID_MAX, MENU_TITLE_MAX, slugify, to_number

__all__ = [
    "MenuItem",
    "TipMenu",
    "dedupe_ids",
    "normalize_tip_menu_payload",
    "parse_fallback_tip_menu",
    "tip_menu_signature",
]

_TITLE_KEYS = ("activity", "title", "name")
_PRICE_KEYS = ("price", "tokens", "amount")


@dataclass(frozen=True, slots=True)
class MenuItem:
    id: str
    title: str
    price: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "price": self.price}


@dataclass(slots=True)
class TipMenu:
    """The priced catalog viewers tip toward."""

    is_enabled: bool = False
    settings: list[MenuItem] = field(default_factory=list)
    updated_at: int = 0
    source: str = "fallback"

    def to_dict(self) -> dict[str, Any]:
        return {
            "isEnabled": self.is_enabled,
            "settings": [item.to_dict() for item in self.settings],
            "updatedAt": self.updated_at,
            "source": self.source,
        }


def _first_present(raw: dict, keys: Iterable[str]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _positive_price(value: Any) -> int:
    num = to_number(value)
    if num is None or num <= 0:
        return 0
    return int(math.floor(num))


def dedupe_ids(items: list[MenuItem]) -> list[MenuItem]:
    """Disambiguate colliding ids by appending the item's position.

    Renamed ids stay within ``ID_MAX``: the base is cut short enough for the
    ``_<index>`` suffix to fit.
    """
    seen: set[str] = set()
    result: list[MenuItem] = []
    for index, item in enumerate(items):
        item_id = item.id
        attempt = index
        while item_id in seen:
            suffix = f"_{attempt}"
            item_id = f"{item.id[:ID_MAX - len(suffix)]}{suffix}"
            attempt += len(items)
        seen.add(item_id)
        if item_id != item.id:
            item = MenuItem(id=item_id, title=item.title, price=item.price)
        result.append(item)
    return result


def _normalize_item(raw: Any, index: int) -> MenuItem | None:
    if not isinstance(raw, dict):
        return None

    title = str(_first_present(raw, _TITLE_KEYS) or "").strip()[:MENU_TITLE_MAX]
    price = _positive_price(_first_present(raw, _PRICE_KEYS))
    if not title or not price:
        return None

    source_id = str(raw.get("id") or "").strip()
    if source_id:
        item_id = slugify(source_id, f"tip_{index}")
    else:
        item_id = slugify(f"{title}_{price}_{index}", f"tip_{index}")
    return MenuItem(id=item_id, title=title, price=price)


def parse_fallback_tip_menu(text: Any) -> list[MenuItem]:
    """Parse ``"Title|Price"`` lines; malformed lines are skipped."""
    lines = [line.strip() for line in str(text or "").splitlines()]
    items: list[MenuItem] = []
    for index, line in enumerate(line for line in lines if line):
        title_part, _, price_part = line.partition("|")
        title = title_part.strip()[:MENU_TITLE_MAX]
        price = _positive_price(price_part.split("|")[0])
        if not title or not price:
            continue
        item_id = slugify(f"{title}_{price}_{index}", f"fallback_{index}")
        items.append(MenuItem(id=item_id, title=title, price=price))
    return dedupe_ids(items)


def normalize_tip_menu_payload(
    payload: Any,
    fallback_text: str,
    *,
    source: str = "sdk",
    now_ms: int = 0,
) -> TipMenu:
    """Normalize ``{tipMenu: {settings: [...], isEnabled?, updatedAt?}}``.

    Falls back to *fallback_text* when the payload yields zero valid items;
    the returned menu's ``source`` reflects which one was used.
    """
    tip_menu = payload.get("tipMenu") if isinstance(payload, dict) else None
    if not isinstance(tip_menu, dict):
        tip_menu = {}

    raw_settings = tip_menu.get("settings")
    if not isinstance(raw_settings, list):
        raw_settings = []

    normalized = [
        item
        for item in (_normalize_item(raw, index) for index, raw in enumerate(raw_settings))
        if item is not None
    ]
    if normalized:
        settings = dedupe_ids(normalized)
    else:
        settings = parse_fallback_tip_menu(fallback_text)
        source = "fallback"

    updated_at = to_number(tip_menu.get("updatedAt"))
    return TipMenu(
        is_enabled=bool(settings),
        settings=settings,
        updated_at=int(updated_at) if updated_at and updated_at > 0 else now_ms,
        source=source,
    )


def tip_menu_signature(items: Iterable[MenuItem]) -> str:
    """Content signature used to detect real menu changes."""
    return "|".join(f"{item.id}:{item.title}:{item.price}" for item in items)
