"""
Data models for queue messages.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from linkflow import validation


class ClickEvent(BaseModel):
    """
    Event model for click tracking.

    Published to the queue when a short code is resolved. A click event is
    a fact about a redirect that already happened, so the model is frozen.

    Wire format (camelCase JSON):
        {shortCode, timestamp, ipAddress, userAgent, referer, destinationUrl}
    """

    short_code: str = Field(..., description="The short code that was resolved")
    timestamp: datetime = Field(..., description="When the click occurred (emitter clock)")

    # Request metadata
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, max_length=validation.MAX_USER_AGENT_LENGTH)
    referer: Optional[str] = Field(None, max_length=validation.MAX_REFERER_LENGTH)

    # Denormalized so the record survives deletion of the mapping
    destination_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("destinationUrl", "longUrl", "destination_url"),
    )

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "shortCode": "aZ3kP9q",
                "timestamp": "2025-10-29T10:30:00Z",
                "ipAddress": "192.168.1.1",
                "userAgent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0",
                "referer": "https://twitter.com",
                "destinationUrl": "https://example.org/a",
            }
        },
    )

    @field_validator("ip_address", "user_agent", "referer", "destination_url", mode="before")
    @classmethod
    def _normalize_unknown(cls, value):
        return validation.normalize_optional(value)

    @field_validator("short_code")
    @classmethod
    def _check_short_code(cls, value: str) -> str:
        if not validation.is_valid_short_code(value):
            raise ValueError(f"invalid short code {value!r}")
        return value

    @field_validator("ip_address")
    @classmethod
    def _check_ip(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not validation.is_valid_ip(value):
            raise ValueError(f"invalid IP address {value!r}")
        return value

    @field_validator("destination_url")
    @classmethod
    def _check_destination(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not validation.is_valid_url(value):
            raise ValueError(f"invalid destination URL {value!r}")
        return value

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        try:
            return value.astimezone(timezone.utc)
        except OverflowError as e:
            # e.g. 0001-01-01T00:00:00+05:00 falls before datetime.min in UTC
            raise ValueError(f"timestamp {value.isoformat()} out of range in UTC") from e

    def to_message(self) -> bytes:
        """Serialize to the camelCase JSON wire format"""
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_message(cls, body: bytes) -> "ClickEvent":
        """
        Parse a wire message.

        Raises:
            pydantic.ValidationError: malformed JSON or invalid fields
        """
        return cls.model_validate_json(body)


@dataclass
class Delivery:
    """
    One delivery of a queued message to a consumer.

    Holds the raw body so the consumer decides how to parse it; the
    message_id is the broker handle used to ack or reject it.
    """

    queue_name: str
    message_id: str
    body: bytes
    redelivered: bool = False
