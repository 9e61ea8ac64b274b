"""Core configuration, errors and resilience primitives for the ingestion service."""
