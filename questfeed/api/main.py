"""
questfeed.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn questfeed.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from questfeed import __version__  # noqa: E402
from questfeed.api.deps import get_config, get_engine  # noqa: E402
from questfeed.api.routes.adventures import router as adventures_router  # noqa: E402
from questfeed.api.routes.feed import router as feed_router  # noqa: E402
from questfeed.api.routes.presence import router as presence_router  # noqa: E402
from questfeed.api.routes.users import router as users_router  # noqa: E402
from questfeed.database.engine import init_db  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

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
    """Startup/shutdown lifecycle — load config, warm the DB engine."""
    cfg = get_config()
    engine = get_engine()
    init_db(engine)
    logger.info(
        "Questfeed API started for %s — engine ready (%s)",
        cfg.community_name, engine.url.database,
    )
    yield
    logger.info("Questfeed API shutting down")


app = FastAPI(
    title="Questfeed API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(feed_router, prefix="/api")
app.include_router(adventures_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(presence_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
