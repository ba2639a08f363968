import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from linkflow import validation
from linkflow.exceptions import InvalidFormat, NotFound
from linkflow.queue.models import ClickEvent
from linkflow.queue.publisher import ClickEventPublisher
from linkflow.store.strategies import CodeStoreStrategy

logger = logging.getLogger(__name__)


class Resolver:
    """
    Resolves short codes and emits a click event per successful resolution.

    The event is handed to the publisher's buffer and published in the
    background; a missing analytics event never delays or blocks the
    redirect.
    """

    def __init__(self, store: CodeStoreStrategy, publisher: Optional[ClickEventPublisher] = None):
        self.store = store
        self.publisher = publisher

    async def resolve(
        self,
        short_code: str,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        referer: Optional[str] = None,
    ) -> str:
        """
        Look up the destination for short_code.

        Raises:
            InvalidFormat: short code outside the allowed format
            NotFound: code absent or expired
            TransientInfra: code store unreachable
        """
        if not validation.is_valid_short_code(short_code):
            raise InvalidFormat("The provided short code format is invalid")

        destination_url = await self.store.get(short_code)
        if destination_url is None:
            raise NotFound("Short URL not found or has expired")

        self._emit_click(short_code, destination_url, client_ip, user_agent, referer)
        return destination_url

    def _emit_click(self, short_code, destination_url, client_ip, user_agent, referer):
        if self.publisher is None:
            return
        try:
            event = ClickEvent(
                short_code=short_code,
                timestamp=datetime.now(timezone.utc),
                ip_address=self._clean_ip(client_ip),
                user_agent=(user_agent or "")[:validation.MAX_USER_AGENT_LENGTH],
                referer=(referer or "")[:validation.MAX_REFERER_LENGTH],
                destination_url=destination_url,
            )
        except ValidationError as e:
            logger.warning("⚠️  Skipping click event for %s: %s", short_code, e)
            return
        self.publisher.submit(event)

    @staticmethod
    def _clean_ip(client_ip: Optional[str]) -> Optional[str]:
        # Test clients and proxies report hosts like "testclient"
        if client_ip and validation.is_valid_ip(client_ip):
            return client_ip
        return None
