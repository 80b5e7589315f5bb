"""Persistence layer: SQLAlchemy Core tables and the storage adapter."""

from lumina.persistence.adapter import StorageAdapter
from lumina.persistence.config import DatabaseConfig
from lumina.persistence.database import Database

__all__ = ["Database", "DatabaseConfig", "StorageAdapter"]
