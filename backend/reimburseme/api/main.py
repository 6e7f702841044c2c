"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes all routers and
sets up startup and shutdown events. When run with uvicorn it
initialises the database and loads configuration from
``reimburseme.core.config``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from reimburseme.api.error_handlers import register_exception_handlers
from reimburseme.api.routes.batch_sessions import router as batch_sessions_router
from reimburseme.api.routes.billing import router as billing_router
from reimburseme.api.routes.exports import router as exports_router
from reimburseme.api.routes.health import router as health_router
from reimburseme.api.routes.ocr import router as ocr_router
from reimburseme.api.routes.stripe_webhooks import router as stripe_webhooks_router
from reimburseme.core.config import settings
from reimburseme.core.database import get_db_debug_info, init_db
from reimburseme.core.observability import init_sentry

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting up...")
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    await init_db()
    logger.info("Database ready: %s", get_db_debug_info())
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    version="1.0.0",
    lifespan=lifespan,
)


# Enrich the Sentry scope with lightweight request info
@app.middleware("http")
async def sentry_context_middleware(request: Request, call_next):
    if settings.SENTRY_DSN:
        scope = sentry_sdk.get_current_scope()
        scope.set_tag("path", request.url.path)
        scope.set_tag("method", request.method)
    return await call_next(request)


# All origins in development, the configured list elsewhere
env_is_dev = (settings.ENVIRONMENT or "development").lower() == "development"
allow_origins = ["*"] if env_is_dev else list(dict.fromkeys(settings.BACKEND_CORS_ORIGINS or []))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=not env_is_dev,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(health_router)
app.include_router(ocr_router)
app.include_router(batch_sessions_router)
app.include_router(exports_router)
app.include_router(billing_router)
app.include_router(stripe_webhooks_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"Welcome to the {settings.PROJECT_NAME} API"}
