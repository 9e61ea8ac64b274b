"""API route handlers for the ingestion service."""

from domo_ingest.api.routes import cta as cta
from domo_ingest.api.routes import health as health
from domo_ingest.api.routes import webhooks as webhooks
