"""
Local SQLite cache for Slack data and conversation embeddings.
"""

from .connection import DatabaseConnection
from .database import CacheDatabase
from .schema import SchemaManager

__all__ = ["CacheDatabase", "DatabaseConnection", "SchemaManager"]
