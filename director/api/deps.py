"""
director.api.deps — FastAPI dependency injection
=================================================
"""

from __future__ import annotations

import hmac
import os
from functools import lru_cache
from typing import Annotated

import httpx
from fastapi import Header, HTTPException, status

from director.services.session_store import SessionStore


@lru_cache(maxsize=1)
def get_store() -> SessionStore:
    return SessionStore.from_env()


def get_tip_menu_transport() -> httpx.AsyncBaseTransport | None:
    """Outbound transport for the tip-menu lookup (overridden in tests)."""
    return None


def _api_key() -> str:
    return os.getenv("BACKEND_API_KEY", "").strip()


def require_api_key(x_api_key: Annotated[str | None, Header()] = None) -> None:
    """Reject the request with 401 when ``BACKEND_API_KEY`` is set and not matched."""
    expected = _api_key()
    if not expected:
        return
    provided = (x_api_key or "").strip()
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
