"""
director.services.remote_store — Remote Session API Client
===========================================================

Thin async wrapper over the session store HTTP API
(:mod:`director.api.routes.sessions`).  Each call opens a short-lived
``httpx.AsyncClient`` with a 5 s timeout.

Contract:
  * ``GET``  → stored snapshot, or ``None`` on 404.
  * ``PUT``  → :class:`PutResult`; a 409 carries the newer stored snapshot.
  * Anything else (timeouts, network errors, 5xx, bad JSON) raises
    :class:`RemoteStoreError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

SESSIONS_PREFIX = "/api/sessions"
REQUEST_TIMEOUT_SEC = 5.0


class RemoteStoreError(Exception):
    """The remote store could not be reached or answered unexpectedly."""


@dataclass(frozen=True, slots=True)
class PutResult:
    conflict: bool = False
    # On conflict: the snapshot the server currently holds (may be None)
    state: dict[str, Any] | None = None
    updated_at: int = 0


class RemoteSessionClient:
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = REQUEST_TIMEOUT_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.api_key = api_key.strip()
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _url(self, session_id: str) -> str:
        return f"{self.base_url}{SESSIONS_PREFIX}/{quote(session_id, safe='')}"

    async def _send(self, method: str, session_id: str, body: Any = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                return await client.request(
                    method,
                    self._url(session_id),
                    headers=self._headers(),
                    json=body,
                )
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"{method} {session_id} failed: {exc!r}") from exc

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError:
            return None

    async def get(self, session_id: str) -> dict[str, Any] | None:
        """Return the stored ``{savedAt, gameState}`` snapshot, or None."""
        resp = await self._send("GET", session_id)
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise RemoteStoreError(f"GET {session_id} returned {resp.status_code}")

        payload = self._json(resp)
        if not isinstance(payload, dict):
            raise RemoteStoreError(f"GET {session_id} returned a non-object body")
        state = payload.get("state")
        return state if isinstance(state, dict) else None

    async def put(self, session_id: str, snapshot: dict[str, Any]) -> PutResult:
        resp = await self._send("PUT", session_id, {"state": snapshot})
        if resp.status_code == 409:
            payload = self._json(resp)
            if not isinstance(payload, dict):
                return PutResult(conflict=True)
            state = payload.get("state")
            updated_at = payload.get("updatedAt")
            return PutResult(
                conflict=True,
                state=state if isinstance(state, dict) else None,
                updated_at=int(updated_at) if isinstance(updated_at, int | float) else 0,
            )
        if not resp.is_success:
            raise RemoteStoreError(f"PUT {session_id} returned {resp.status_code}")
        return PutResult()
