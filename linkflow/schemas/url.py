from pydantic import BaseModel, HttpUrl, Field, computed_field
from typing import Optional
from datetime import datetime
from linkflow.config import settings


class URLCreate(BaseModel):
    long_url: HttpUrl = Field(..., description="The original URL to be shortened")
    custom_code: Optional[str] = Field(None, description="Caller-chosen short code (3-20 characters)")
    ttl_seconds: Optional[int] = Field(
        None, gt=0, description="Lifetime of the short URL; the configured default when omitted"
    )


class URLResponse(BaseModel):
    """Response schema for a short code mapping"""
    short_code: str
    long_url: str
    expires_at: Optional[datetime] = None

    @computed_field
    @property
    def short_url(self) -> str:
        """Computed field - automatically generated from short_code"""
        return f"{settings.base_url}/{self.short_code}"


class ClickStats(BaseModel):
    """Click analytics for a short code"""
    short_code: str
    clicks: int
