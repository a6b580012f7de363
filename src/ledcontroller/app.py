"""FastAPI application exposing UniFi LED control and scheduling endpoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .router import router as api_router
from .state import build_app_state
from .unifi.utils import configure_logging, logger

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    state = build_app_state()
    await state.start()
    app.state.app_state = state
    logger.info("LED controller API started")
    try:
        yield
    finally:
        app.state.app_state = None
        await state.close()
        logger.info("LED controller API stopped")


app = FastAPI(
    title="UniFi LED Controller API",
    version="1.0.0",
    description=(
        "HTTP API for toggling access point LEDs and managing weekly LED "
        "schedules on a UniFi controller."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    """Readiness check for load balancers and sleep hooks."""
    return {"status": "ok"}
