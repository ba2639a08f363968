from linkflow import validation
from linkflow.exceptions import InvalidFormat
from linkflow.storage.strategies import ClickStoreStrategy


class AnalyticsService:
    """Read side of the click analytics written by the ingestor"""

    def __init__(self, click_store: ClickStoreStrategy):
        self.click_store = click_store

    async def get_click_count(self, short_code: str) -> int:
        """
        Total clicks recorded for short_code.

        Codes that were never clicked (or never allocated) count 0; the
        analytics store does not know which codes exist.
        """
        if not validation.is_valid_short_code(short_code):
            raise InvalidFormat("The provided short code format is invalid")
        return await self.click_store.count_clicks(short_code)
