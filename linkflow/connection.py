"""
Connection lifecycle for Redis-backed components.

A RedisConnection is an owned object: it is created at startup (FastAPI
lifespan or the ingestor entry point), handed to the code store and the
event channel, and closed on shutdown. Reconnection is handled by a
supervised background task instead of retries scattered over call sites.

Policy:
- startup: bounded attempts with a fixed delay (default 5 x 5s)
- steady state: ping every health_check_interval, reconnect indefinitely
  with the same fixed delay while the server is down
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from linkflow.exceptions import TransientInfra

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def connect_with_retry(
    connect: Callable[[], Awaitable[T]],
    name: str,
    attempts: int = 5,
    delay: float = 5.0,
) -> T:
    """
    Call connect() until it succeeds or attempts run out.

    connect() must raise TransientInfra for failures worth retrying.

    Raises:
        TransientInfra: after the last failed attempt
    """
    for attempt in range(1, attempts + 1):
        try:
            return await connect()
        except TransientInfra as e:
            remaining = attempts - attempt
            logger.warning(
                "⚠️  %s connection failed (%s). Retries left: %d", name, e, remaining
            )
            if remaining == 0:
                break
            await asyncio.sleep(delay)

    logger.error("❌ Failed to connect to %s after %d attempts", name, attempts)
    raise TransientInfra(f"Could not connect to {name} after {attempts} attempts")


def _default_client_factory(url: str, socket_timeout: Optional[float]):
    return aioredis.from_url(
        url,
        decode_responses=False,
        socket_connect_timeout=2,
        socket_timeout=socket_timeout,
    )


class RedisConnection:
    """
    Lifecycle-managed async Redis client.

    Components read `client` on every operation. While the server is known
    to be down the property raises TransientInfra, so callers fail fast
    instead of hanging on socket timeouts.
    """

    def __init__(
        self,
        url: str,
        name: str = "redis",
        connect_attempts: int = 5,
        retry_delay: float = 5.0,
        health_check_interval: float = 5.0,
        socket_timeout: Optional[float] = 2.0,
        client_factory: Callable = _default_client_factory,
    ):
        self.url = url
        self.name = name
        self.connect_attempts = connect_attempts
        self.retry_delay = retry_delay
        self.health_check_interval = health_check_interval
        self.socket_timeout = socket_timeout
        self._client_factory = client_factory
        self._client = None
        self._supervisor: Optional[asyncio.Task] = None

    @property
    def client(self):
        if self._client is None:
            raise TransientInfra(f"{self.name} is not connected")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def _open(self):
        client = self._client_factory(self.url, self.socket_timeout)
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            await client.aclose()
            raise TransientInfra(f"{self.name} unreachable: {e}") from e

        self._client = client
        logger.info("✅ %s connected", self.name)
        return client

    async def _drop_client(self):
        client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except (RedisError, OSError):
                pass

    async def connect(self):
        """Connect with the bounded startup policy"""
        return await connect_with_retry(
            self._open, self.name, self.connect_attempts, self.retry_delay
        )

    def start_supervisor(self) -> asyncio.Task:
        """Start the background health check / reconnect task"""
        if self._supervisor is None or self._supervisor.done():
            self._supervisor = asyncio.create_task(
                self._supervise(), name=f"{self.name}-supervisor"
            )
        return self._supervisor

    async def _supervise(self):
        while True:
            if self._client is not None:
                try:
                    await self._client.ping()
                    await asyncio.sleep(self.health_check_interval)
                    continue
                except (RedisError, OSError) as e:
                    logger.warning("⚠️  %s connection lost: %s", self.name, e)
                    await self._drop_client()

            try:
                await self._open()
            except TransientInfra as e:
                logger.warning(
                    "⚠️  %s reconnect failed (%s). Retrying in %ss",
                    self.name, e, self.retry_delay,
                )
                await asyncio.sleep(self.retry_delay)

    async def close(self):
        if self._supervisor is not None:
            self._supervisor.cancel()
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass
            self._supervisor = None

        await self._drop_client()
        logger.info("🛑 %s connection closed", self.name)
