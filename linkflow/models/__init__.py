"""
Database models for the analytics store.

Short code mappings live in the code store (Redis), not here. This
separates the hot lookup path from the durable click history.
"""

from .click import ClickRecord

__all__ = ["ClickRecord"]
