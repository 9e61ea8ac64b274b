"""HTTP layer for the ingestion service."""
