"""
Error taxonomy shared by the allocator, resolver and ingestor.

Infrastructure exceptions (redis, SQLAlchemy) are translated into these
at the store and channel boundaries, so callers only ever see this set.
"""


class LinkflowError(Exception):
    """Base class for all linkflow errors"""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidFormat(LinkflowError):
    """Malformed short code, URL or payload. Never retried."""


class Conflict(LinkflowError):
    """Requested custom code is already allocated."""


class ExhaustedAttempts(LinkflowError):
    """Random allocation found no free code within the attempt budget."""


class NotFound(LinkflowError):
    """Short code absent or expired."""


class TransientInfra(LinkflowError):
    """Store, broker or database unreachable. Safe to retry later."""


class PermanentData(LinkflowError):
    """Payload or record can never be stored. Discard, do not retry."""
