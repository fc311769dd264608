"""FastAPI application for the support call recording and enrichment pipeline."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .core.config import settings
from .core.errors import PipelineError
from .core.logging import configure_logging
from .routers import calls as calls_router
from .routers import webhooks as webhooks_router
from .services import telephony
from .services.dispatcher import dispatcher
from .services.poller import recording_poller

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_logging(settings.log_level)
    if settings.recording_poll_enabled:
        if telephony.get_telephony_client().configured:
            recording_poller.start()
        else:
            logger.warning("Recording poller enabled but Twilio credentials are missing; not starting it")
    try:
        yield
    finally:
        await recording_poller.stop()
        await dispatcher.shutdown()


app = FastAPI(title="Support Call Pipeline API", version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Render pipeline errors with a code callers can branch on."""

    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.code, "detail": exc.detail},
    )


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD requests for uptime probes."""

    return Response(status_code=200)


app.include_router(calls_router.router, prefix="/api/calls", tags=["calls"])
app.include_router(webhooks_router.router, prefix="/webhooks", tags=["webhooks"])
