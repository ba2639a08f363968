import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from linkflow import validation
from linkflow.config import settings
from linkflow.exceptions import Conflict, ExhaustedAttempts, InvalidFormat
from linkflow.services.short_code_strategies import RandomShortCodeStrategy, ShortCodeStrategy
from linkflow.store.models import ShortCodeMapping
from linkflow.store.strategies import CodeStoreStrategy

logger = logging.getLogger(__name__)

# Sentinel so callers can ask for "no expiry" explicitly with None
USE_DEFAULT_TTL = object()


class Allocator:
    """
    Allocates short codes and registers them in the code store.

    Every write goes through the store's atomic set_if_absent, so two
    allocators can never both claim the same code, whether it was
    requested by the caller or generated randomly.
    """

    def __init__(
        self,
        store: CodeStoreStrategy,
        strategy: Optional[ShortCodeStrategy] = None,
        max_attempts: int = None,
        default_ttl_seconds=USE_DEFAULT_TTL,
    ):
        self.store = store
        self.strategy = strategy or RandomShortCodeStrategy(length=settings.short_code_length)
        self.max_attempts = settings.max_allocation_attempts if max_attempts is None else max_attempts
        self.default_ttl_seconds = (
            settings.default_ttl_seconds
            if default_ttl_seconds is USE_DEFAULT_TTL
            else default_ttl_seconds
        )

    async def allocate(
        self,
        destination_url: str,
        custom_code: Optional[str] = None,
        ttl_seconds=USE_DEFAULT_TTL,
    ) -> ShortCodeMapping:
        """
        Allocate a short code for destination_url.

        Args:
            destination_url: Absolute http/https URL
            custom_code: Caller-chosen code; generated randomly when omitted
            ttl_seconds: Lifetime of the mapping; None for no expiry,
                omitted for the configured default

        Raises:
            InvalidFormat: bad destination URL or custom code
            Conflict: custom code already allocated
            ExhaustedAttempts: no free random code within the attempt budget
            TransientInfra: code store unreachable
        """
        if not validation.is_valid_url(destination_url):
            raise InvalidFormat("Destination must be an absolute http:// or https:// URL")

        if ttl_seconds is USE_DEFAULT_TTL:
            ttl_seconds = self.default_ttl_seconds
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise InvalidFormat("ttl_seconds must be positive")

        if custom_code is not None:
            code = await self._claim_custom(custom_code, destination_url, ttl_seconds)
        else:
            code = await self._claim_random(destination_url, ttl_seconds)

        expires_at = None
        if ttl_seconds is not None:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)

        logger.info("🔗 Allocated %s -> %s", code, destination_url)
        return ShortCodeMapping(code=code, destination_url=destination_url, expires_at=expires_at)

    async def _claim_custom(self, code: str, destination_url: str, ttl_seconds: Optional[int]) -> str:
        if not validation.is_valid_short_code(code):
            raise InvalidFormat(
                "Custom code must be 3-20 letters or digits"
            )

        if not await self.store.set_if_absent(code, destination_url, ttl_seconds):
            raise Conflict(f"Custom code '{code}' already exists. Please choose a different one.")
        return code

    async def _claim_random(self, destination_url: str, ttl_seconds: Optional[int]) -> str:
        for attempt in range(1, self.max_attempts + 1):
            code = self.strategy.generate()
            if await self.store.set_if_absent(code, destination_url, ttl_seconds):
                if attempt > 1:
                    logger.info("Short code collision resolved after %d attempts", attempt)
                return code

        # Suggests the alphabet/length is too small for the current load
        logger.error(
            "❌ Could not allocate a unique short code after %d attempts", self.max_attempts
        )
        raise ExhaustedAttempts(
            f"Could not generate unique short code after {self.max_attempts} attempts"
        )
