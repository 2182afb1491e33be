"""
director.api.main — FastAPI application entry point
====================================================

Remote session store + tip-menu lookup used by the director host.

Run with::

    uvicorn director.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

load_dotenv()

from director.api.deps import get_store  # noqa: E402
from director.api.routes.sessions import router as sessions_router  # noqa: E402
from director.api.routes.tip_menu import router as tip_menu_router  # noqa: E402
from director.services.session_store import (  # noqa: E402
    SessionStore,
    StorageMode,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

CORS_METHODS = ["GET", "PUT", "DELETE", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "X-Api-Key"]
CORS_MAX_AGE = 86400


def _cors_origins() -> list[str]:
    """``CORS_ORIGINS`` as a list; ``*`` (the default) allows any origin."""
    raw = os.getenv("CORS_ORIGINS", "*").strip() or "*"
    if raw == "*":
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — resolve the storage backend."""
    store = get_store()
    purged = store.purge_expired()
    logger.info(
        "Director API started — storage=%s (purged %d expired sessions)", store.mode, purged
    )
    yield
    logger.info("Director API shutting down")


app = FastAPI(
    title="Director Live Session API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=CORS_METHODS,
    allow_headers=CORS_HEADERS,
    max_age=CORS_MAX_AGE,
)


@app.exception_handler(StorageUnavailableError)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError):
    logger.warning("Storage unavailable for %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"error": str(exc)})


app.include_router(sessions_router, prefix="/api")
app.include_router(tip_menu_router, prefix="/api")


class HealthOut(BaseModel):
    ok: bool
    storage: str
    isAvailable: bool
    isPersistent: bool
    now: int


@app.get("/api/health", response_model=HealthOut)
def health(store: SessionStore = Depends(get_store)):
    mode = store.mode
    return {
        "ok": True,
        "storage": mode.value,
        "isAvailable": mode is not StorageMode.DISABLED,
        "isPersistent": mode is StorageMode.KV,
        "now": int(time.time() * 1000),
    }
