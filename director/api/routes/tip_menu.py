"""
director.api.routes.tip_menu — Public tip-menu lookup
======================================================
"""

from __future__ import annotations

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from director.api.deps import get_tip_menu_transport, require_api_key
from director.services.tip_menu_lookup import TipMenuUnavailable, lookup_tip_menu

router = APIRouter(tags=["tip-menu"], dependencies=[Depends(require_api_key)])


@router.get("/tip-menu")
async def get_tip_menu(
    username: str = Query(""),
    host: str | None = Query(None),
    transport: httpx.AsyncBaseTransport | None = Depends(get_tip_menu_transport),
):
    try:
        result = await lookup_tip_menu(username, host, transport=transport)
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    except TipMenuUnavailable as exc:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"ok": False, "error": str(exc)},
        )
    return {"ok": True, "source": result.source, "tipMenu": result.tip_menu}
