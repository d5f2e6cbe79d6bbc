"""HLS ingestion and packaging pipeline."""

__version__ = "0.1.0"
