"""Data store protocol and its SQLAlchemy implementation."""

from payout_engine.store.base import DataStore
from payout_engine.store.sql import SqlDataStore

__all__ = ["DataStore", "SqlDataStore"]
