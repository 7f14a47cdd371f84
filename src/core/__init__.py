"""
Cast Ingest Core Package

Database access, the ingestion pipeline, and observability.
"""

from . import database
from . import ingestion

__all__ = ["database", "ingestion"]
