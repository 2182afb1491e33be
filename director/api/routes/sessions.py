"""
director.api.routes.sessions — Session snapshot store
======================================================

``GET | PUT | DELETE /api/sessions/{session_id}``.  A PUT whose
``state.savedAt`` is older than the stored snapshot is answered with 409
and the stored snapshot, so the writer can adopt it.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from director.api.deps import get_store, require_api_key
from director.constants import SESSION_ID_RE
from director.database.engine import run_db
from director.services.session_store import SessionStore

router = APIRouter(prefix="/sessions", tags=["sessions"], dependencies=[Depends(require_api_key)])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SessionWrite(BaseModel):
    state: dict[str, Any]


class SessionOut(BaseModel):
    sessionId: str
    updatedAt: int
    state: dict[str, Any]


def _checked_id(session_id: str) -> str:
    session_id = session_id.strip()
    if not SESSION_ID_RE.match(session_id):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid session id")
    return session_id


@router.get("/{session_id}", response_model=SessionOut)
async def read_session(session_id: str, store: SessionStore = Depends(get_store)):
    session_id = _checked_id(session_id)
    row = await run_db(store.get, session_id)
    if row is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Session not found")
    return SessionOut(sessionId=session_id, updatedAt=row.updated_at, state=row.state)


@router.put("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def write_session(
    session_id: str,
    request: Request,
    store: SessionStore = Depends(get_store),
):
    session_id = _checked_id(session_id)
    try:
        body = SessionWrite.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST, 'Body must include object in field "state"'
        )

    result = await run_db(store.set, session_id, body.state, body.state.get("savedAt"))
    if result.is_stale:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "error": "Stale snapshot rejected: a newer state already exists",
                "sessionId": session_id,
                "updatedAt": result.updated_at,
                "state": result.state,
            },
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_session(session_id: str, store: SessionStore = Depends(get_store)):
    session_id = _checked_id(session_id)
    await run_db(store.delete, session_id)
    logger.info("Session %s deleted", session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
