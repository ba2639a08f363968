"""
Data models for code store entries.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ShortCodeMapping(BaseModel):
    """
    A short code and the destination it resolves to.

    The code store keeps only the destination string under the code key;
    expires_at is derived from the TTL the mapping was written with.
    """

    code: str = Field(..., description="Short code, unique key in the code store")
    destination_url: str = Field(..., description="Absolute http/https URL")
    expires_at: Optional[datetime] = Field(None, description="None means no expiry")

    model_config = ConfigDict(frozen=True)
