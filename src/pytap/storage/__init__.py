"""Persistence layer (SQLAlchemy on SQLite)."""

from pytap.storage.repository import TapRepository, create_db_engine

__all__ = ["TapRepository", "create_db_engine"]
