"""ASGI application for the Relay messaging service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from relay_stage.api.v1 import (
    auth_router,
    devices_router,
    messages_router,
    security_router,
    unread_router,
)
from relay_stage.core.settings import settings
from relay_stage.services.broadcast import get_broadcast_store
from relay_stage.services.push import get_push_gateway
from relay_stage.services.side_effects import get_side_effect_runner

API_PREFIX = "/api/v1"
DESCRIPTION = "Admin and user messaging API with device-bound sessions"

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    yield
    # Let in-flight deliveries finish before the push client goes away.
    runner = get_side_effect_runner()
    if runner.pending:
        logger.info("Waiting for %d side effect(s) before shutdown", runner.pending)
        await runner.drain()
    await get_push_gateway().close()
    get_broadcast_store().close()


app = FastAPI(
    title=settings.app_name,
    description=DESCRIPTION,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Device-Fingerprint"],
)
app.add_middleware(GZipMiddleware)

for router in (auth_router, messages_router, unread_router, security_router, devices_router):
    app.include_router(router, prefix=API_PREFIX)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Describe the service and where its API docs live."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": DESCRIPTION,
        "api": API_PREFIX,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("relay_stage.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
