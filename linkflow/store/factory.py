"""
Factory for creating code store instances.
"""

from enum import Enum
from typing import Optional

from linkflow.connection import RedisConnection
from .strategies import CodeStoreStrategy, RedisCodeStore, InMemoryCodeStore


class CodeStoreBackend(Enum):
    """Available code store backends"""
    REDIS = "redis"
    MEMORY = "memory"


class CodeStoreFactory:
    """
    Simple factory for creating code store instances.

    Connections are owned by the caller and passed in; the factory
    keeps no global instance.
    """

    @staticmethod
    def create(
        backend: CodeStoreBackend,
        connection: Optional[RedisConnection] = None
    ) -> CodeStoreStrategy:
        """
        Create a code store.

        Args:
            backend: Type of store backend (from enum)
            connection: Redis connection, required for the redis backend

        Returns:
            CodeStoreStrategy instance
        """
        if backend == CodeStoreBackend.REDIS:
            if connection is None:
                raise ValueError("Redis code store needs a RedisConnection")
            return RedisCodeStore(connection)

        elif backend == CodeStoreBackend.MEMORY:
            return InMemoryCodeStore()

        raise ValueError(f"Unknown code store backend: {backend}")
