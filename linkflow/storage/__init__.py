"""
Click storage module for analytics data.

Separates the durable click history (SQL) from the short code mappings
(key-value store).
"""

from .strategies import ClickStoreStrategy, SQLAlchemyClickStore, event_key

__all__ = [
    "ClickStoreStrategy",
    "SQLAlchemyClickStore",
    "event_key",
]
