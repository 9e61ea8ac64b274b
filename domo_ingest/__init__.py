"""Tavus webhook ingestion service for Domo interactive video demos."""

__version__ = "0.1.0"
