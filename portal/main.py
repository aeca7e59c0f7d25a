"""FastAPI application entrypoint."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portal.api.deps import SESSION_TOKEN_HEADER
from portal.api.v1 import v1_router
from portal.core.config import get_settings
from portal.core.database import init_db
from portal.core.errors import register_exception_handlers

_settings = get_settings()

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup: ensure tables exist (use Alembic in production)
    await init_db()
    yield


app = FastAPI(
    title="Rental Portal",
    version="0.1.0",
    description="Customer and admin portal for equipment rental",
    lifespan=lifespan,
)

register_exception_handlers(app)

# ── CORS ─────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _settings.allowed_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[SESSION_TOKEN_HEADER],
)

# ── API routes ───────────────────────────────────────────────
app.include_router(v1_router)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    return {"status": "ok"}
