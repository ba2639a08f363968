from datetime import datetime, timedelta, timezone

from linkflow import validation
from linkflow.exceptions import InvalidFormat, NotFound
from linkflow.store.models import ShortCodeMapping
from linkflow.store.strategies import CodeStoreStrategy


class URLService:
    """
    Read and delete operations on existing short codes.

    Creation goes through the Allocator and redirects through the
    Resolver; this service covers the remaining management endpoints.
    """

    def __init__(self, store: CodeStoreStrategy):
        self.store = store

    @staticmethod
    def _check_code(short_code: str):
        if not validation.is_valid_short_code(short_code):
            raise InvalidFormat("The provided short code format is invalid")

    async def get_url_info(self, short_code: str) -> ShortCodeMapping:
        """Get the mapping for short_code, with expiry from the store's remaining TTL"""
        self._check_code(short_code)

        destination_url = await self.store.get(short_code)
        if destination_url is None:
            raise NotFound("Short URL not found")

        remaining = await self.store.ttl(short_code)
        expires_at = None
        if remaining is not None:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=remaining)

        return ShortCodeMapping(
            code=short_code, destination_url=destination_url, expires_at=expires_at
        )

    async def delete_url(self, short_code: str) -> int:
        """
        Delete a short code. Subsequent resolutions return NotFound.

        Returns:
            Number of mappings removed (always 1)
        """
        self._check_code(short_code)

        removed = await self.store.delete(short_code)
        if removed == 0:
            raise NotFound("Short URL not found")
        return removed
