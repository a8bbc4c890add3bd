"""
quietwatch.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn quietwatch.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from quietwatch.api.deps import get_engine  # noqa: E402
from quietwatch.api.routes.bot import router as bot_router  # noqa: E402
from quietwatch.api.routes.members import router as members_router  # noqa: E402
from quietwatch.api.routes.reminders import router as reminders_router  # noqa: E402
from quietwatch.api.routes.settings import router as settings_router  # noqa: E402
from quietwatch.database.engine import init_db  # noqa: E402
from quietwatch.services.log_buffer import install_handler  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Allowed CORS origins.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Uvicorn reconfigures logging at startup, so the buffer handler is
    # attached here rather than at import time.
    install_handler()

    engine = get_engine()
    init_db(engine)
    logger.info("Quietwatch API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Quietwatch API shutting down")


app = FastAPI(
    title="Quietwatch Dashboard API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(bot_router, prefix="/api")
app.include_router(members_router, prefix="/api")
app.include_router(reminders_router, prefix="/api")
app.include_router(settings_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
