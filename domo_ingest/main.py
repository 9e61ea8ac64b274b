"""Domo Ingest - Tavus webhook ingestion service."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from domo_ingest import __version__
from domo_ingest.api.errors import register_exception_handlers
from domo_ingest.api.routes import cta, health, webhooks
from domo_ingest.middleware.performance import RequestIDMiddleware, RequestTimingMiddleware


# Configure logging: JSON for production (stdout is shipped), text for dev
def _configure_logging() -> None:
    """Set up logging based on LOG_FORMAT env var.

    json: Structured JSON via python-json-logger.
    text: Human-readable format (for local development).
    """
    log_format = os.environ.get("LOG_FORMAT", "text").lower()
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if log_format == "json":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "service",
            },
            static_fields={"app": "domo-ingest"},
        )
        handler.setFormatter(formatter)
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)


_configure_logging()
logger = logging.getLogger(__name__)


def get_cors_origins() -> list[str]:
    from domo_ingest.core.config import settings

    return settings.cors_origins_list


@asynccontextmanager
async def lifespan(_app: FastAPI) -> Any:
    """Application lifespan handler for startup and shutdown events."""
    from domo_ingest.core.config import settings

    logger.info("Starting Domo ingest API...")
    if settings.TAVUS_WEBHOOK_SECRET.get_secret_value():
        logger.info("Webhook HMAC verification enabled")
    elif settings.TAVUS_WEBHOOK_TOKEN.get_secret_value():
        logger.info("Webhook callback-token verification enabled")
    else:
        logger.warning("No webhook secret or token configured")
    if settings.IDEMPOTENCY_RETENTION_DAYS is None:
        logger.info("Idempotency ledger retention unlimited")
    yield
    logger.info("Shutting down Domo ingest API...")


app = FastAPI(
    title="Domo Ingest API",
    description="Tavus webhook event processing and analytics ingestion",
    version=__version__,
    lifespan=lifespan,
)

CORS_ORIGINS = get_cors_origins()
logger.info("CORS allowed origins: %s", CORS_ORIGINS)

# In Starlette, last-added = outermost, so add timing first, then ID.
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(RequestIDMiddleware)

# CORS added last so it's outermost (handles preflight first)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# The provider is configured with the bare /webhook callback URL
app.include_router(webhooks.router)
app.include_router(cta.router, prefix="/api")
app.include_router(health.router)


@app.get("/", tags=["system"])
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "name": "Domo Ingest API",
        "version": __version__,
    }
