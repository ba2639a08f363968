"""
Code store strategies using Strategy Pattern.
Allows switching between different key-value backends (Redis, In-Memory).

The code store maps short code -> destination URL with an optional TTL.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple
import asyncio
import time

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from linkflow.connection import RedisConnection
from linkflow.exceptions import TransientInfra

_UNREACHABLE = (RedisConnectionError, RedisTimeoutError, OSError)


class CodeStoreStrategy(ABC):
    """
    Abstract base class for code store strategies.

    All methods are async because store operations involve I/O (network for Redis).
    Infrastructure failures surface as TransientInfra.
    """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if key exists"""
        pass

    @abstractmethod
    async def set_with_expiry(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        """
        Set value unconditionally.

        Args:
            key: Short code
            value: Destination URL
            ttl_seconds: Time to live in seconds, None for no expiry

        Returns:
            True if successful
        """
        pass

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        """
        Atomically set value only if key does not exist.

        Returns:
            True if written, False if key was already taken
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Get value.

        Returns:
            Stored value or None if absent or expired
        """
        pass

    @abstractmethod
    async def ttl(self, key: str) -> Optional[int]:
        """Remaining lifetime in seconds, None if the key has no expiry or is absent"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> int:
        """
        Delete key.

        Returns:
            Number of keys removed (0 or 1)
        """
        pass


class RedisCodeStore(CodeStoreStrategy):
    """
    Redis code store implementation with async operations.

    - Distributed (all allocator and resolver instances share it)
    - Expiry is enforced by Redis itself
    - set_if_absent maps to SET NX, so concurrent allocators cannot both win
    """

    def __init__(self, connection: RedisConnection, key_prefix: str = ""):
        """
        Initialize Redis code store.

        Args:
            connection: Owned Redis connection
            key_prefix: Optional namespace for keys
        """
        self.connection = connection
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.connection.client.exists(self._key(key)))
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis exists error: {e}") from e

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        try:
            return bool(await self.connection.client.set(self._key(key), value, ex=ttl_seconds))
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis set error: {e}") from e

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        try:
            result = await self.connection.client.set(
                self._key(key), value, ex=ttl_seconds, nx=True
            )
            return bool(result)
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis set error: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.connection.client.get(self._key(key))
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis get error: {e}") from e
        return value.decode('utf-8') if value else None

    async def ttl(self, key: str) -> Optional[int]:
        try:
            remaining = await self.connection.client.ttl(self._key(key))
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis ttl error: {e}") from e
        # -1: no expiry, -2: missing key
        return remaining if remaining >= 0 else None

    async def delete(self, key: str) -> int:
        try:
            return int(await self.connection.client.delete(self._key(key)))
        except _UNREACHABLE as e:
            raise TransientInfra(f"Redis delete error: {e}") from e


class InMemoryCodeStore(CodeStoreStrategy):
    """
    In-memory code store implementation using Python dict.

    Good for development and testing. Expiry is enforced lazily on read;
    a lock keeps set_if_absent atomic across concurrent tasks.
    Not distributed and lost on restart.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize in-memory store"""
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live_entry(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        return self._clock() + ttl_seconds if ttl_seconds else None

    async def exists(self, key: str) -> bool:
        return self._live_entry(key) is not None

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        self._data[key] = (value, self._expiry(ttl_seconds))
        return True

    async def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int]) -> bool:
        async with self._lock:
            if self._live_entry(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl_seconds))
            return True

    async def get(self, key: str) -> Optional[str]:
        entry = self._live_entry(key)
        return entry[0] if entry else None

    async def ttl(self, key: str) -> Optional[int]:
        entry = self._live_entry(key)
        if entry is None or entry[1] is None:
            return None
        return max(0, int(entry[1] - self._clock()))

    async def delete(self, key: str) -> int:
        if self._live_entry(key) is None:
            return 0
        del self._data[key]
        return 1
