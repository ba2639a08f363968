"""
Code store module: short code -> destination URL mappings.
Implements Strategy Pattern for flexible key-value backends.
"""

from .strategies import CodeStoreStrategy, RedisCodeStore, InMemoryCodeStore
from .factory import CodeStoreFactory, CodeStoreBackend
from .models import ShortCodeMapping

__all__ = [
    "CodeStoreStrategy",
    "RedisCodeStore",
    "InMemoryCodeStore",
    "CodeStoreFactory",
    "CodeStoreBackend",
    "ShortCodeMapping",
]
