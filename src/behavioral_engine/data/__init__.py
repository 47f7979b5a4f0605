"""Persistence layer: engine, ORM models and domain schemas."""

from behavioral_engine.data.db import Base, Database, get_database, reset_database

__all__ = ["Base", "Database", "get_database", "reset_database"]
