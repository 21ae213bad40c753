"""FastAPI application for the modguard moderation service.

Provides REST API endpoints wrapping the modguard package for:
- Content scoring, flag review and conversation scans
- Suspensions and emergency blocks
- Law-enforcement cases and evidence holds
- Secret-conversation screenshot protection
- Retention cleanup, audit log, security alerts and webhooks
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from modguard import __version__
from modguard.config import load_config
from modguard.errors import ModerationError
from modguard.utils.log import setup_logging
from web.backend.app.routers import cases, enforcement, maintenance, moderation, privacy, security

setup_logging(load_config().log_level)
logger = logging.getLogger("modguard.web")

app = FastAPI(
    title="modguard API",
    description=(
        "REST API for the modguard content-risk moderation engine. "
        "Provides endpoints for scoring and reviewing content, enforcement, "
        "law-enforcement escalation, evidence preservation and privacy protection."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Engine errors
# ---------------------------------------------------------------------------


@app.exception_handler(ModerationError)
async def moderation_error_handler(request: Request, exc: ModerationError):
    if exc.http_status >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error_code": exc.code},
        )
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": exc.code, "detail": exc.message},
    )


# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(moderation.router)
app.include_router(enforcement.router)
app.include_router(cases.router)
app.include_router(privacy.router)
app.include_router(maintenance.router)
app.include_router(security.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "modguard API",
        "version": __version__,
        "description": "Content-risk moderation and escalation engine",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
