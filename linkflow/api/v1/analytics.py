from fastapi import APIRouter, Depends
from linkflow.schemas.url import ClickStats
from linkflow.services.analytics_service import AnalyticsService
from linkflow.dependencies import get_analytics_service

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/{short_code}", response_model=ClickStats)
async def get_click_stats(
    short_code: str,
    analytics_service: AnalyticsService = Depends(get_analytics_service)
):
    """Get the number of recorded clicks for a short URL"""
    clicks = await analytics_service.get_click_count(short_code)
    return ClickStats(short_code=short_code, clicks=clicks)
