"""Route ingestion and weather annotation pipeline for planned rides."""

__version__ = "0.1.0"
