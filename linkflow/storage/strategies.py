"""
Click storage strategies using Strategy Pattern.

The analytics store is written only by the ingestor. Implementations
classify their failures so the ingestor can decide between requeue and
discard:
- TransientInfra: connection lost, timeout, database locked -> retry later
- PermanentData: the record itself can never be stored -> discard
"""

from abc import ABC, abstractmethod
from typing import Optional
import asyncio
import hashlib
import logging

from sqlalchemy import func, text
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session

from linkflow.database.connection import SessionLocal
from linkflow.exceptions import PermanentData, TransientInfra
from linkflow.models.click import ClickRecord
from linkflow.queue.models import ClickEvent

logger = logging.getLogger(__name__)


def event_key(event: ClickEvent) -> str:
    """
    Idempotency key for a click event.

    Built from the fields the emitter sets, so every redelivery of the same
    message yields the same key.
    """
    parts = [
        event.short_code,
        event.timestamp.isoformat(),
        event.ip_address or "",
        event.user_agent or "",
        event.referer or "",
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class ClickStoreStrategy(ABC):
    """Abstract base class for durable click storage"""

    @abstractmethod
    async def insert(self, event: ClickEvent) -> int:
        """
        Persist one click event.

        Returns:
            ID of the stored record

        Raises:
            TransientInfra: store unreachable, worth retrying
            PermanentData: record rejected by the store
        """
        pass

    @abstractmethod
    async def count_clicks(self, short_code: str) -> int:
        """Get total click count for a short code"""
        pass

    @abstractmethod
    async def ping(self) -> None:
        """
        Check the store is reachable.

        Raises:
            TransientInfra: if it is not
        """
        pass


class SQLAlchemyClickStore(ClickStoreStrategy):
    """
    SQL implementation of click storage (SQLite for development,
    PostgreSQL in production).

    Sessions are synchronous, so each operation runs in a worker thread to
    keep the event loop free while the database is slow or unreachable.
    """

    def __init__(self, session_factory=SessionLocal, deduplicate: bool = True):
        """
        Args:
            session_factory: Factory for creating database sessions
            deduplicate: Collapse redelivered events onto their existing record
        """
        self.session_factory = session_factory
        self.deduplicate = deduplicate

    async def insert(self, event: ClickEvent) -> int:
        try:
            return await asyncio.to_thread(self._insert, event)
        except IntegrityError as e:
            raise PermanentData(f"Constraint violation: {e.orig}") from e
        except (OperationalError, InterfaceError) as e:
            raise TransientInfra(f"Database unavailable: {e.orig}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise TransientInfra(f"Database connection lost: {e.orig}") from e
            raise PermanentData(f"Database rejected record: {e.orig}") from e
        except (DisconnectionError, PoolTimeoutError) as e:
            raise TransientInfra(f"Database unavailable: {e}") from e

    def _insert(self, event: ClickEvent) -> int:
        key = event_key(event) if self.deduplicate else None

        with self.session_factory() as db:
            record = ClickRecord(
                short_code=event.short_code,
                timestamp=event.timestamp,
                ip_address=event.ip_address,
                user_agent=event.user_agent,
                referer=event.referer,
                destination_url=event.destination_url,
                event_key=key,
            )
            try:
                db.add(record)
                db.flush()
                record_id = record.id
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self._find_by_key(db, key) if key else None
                if existing is None:
                    raise
                logger.info(
                    "♻️  Duplicate click event for %s, already stored as record %d",
                    event.short_code, existing,
                )
                return existing

        return record_id

    @staticmethod
    def _find_by_key(db: Session, key: str) -> Optional[int]:
        return db.query(ClickRecord.id).filter(ClickRecord.event_key == key).scalar()

    async def count_clicks(self, short_code: str) -> int:
        def _count() -> int:
            with self.session_factory() as db:
                return db.query(func.count(ClickRecord.id)).filter(
                    ClickRecord.short_code == short_code
                ).scalar()

        try:
            return await asyncio.to_thread(_count)
        except (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError) as e:
            raise TransientInfra(f"Database unavailable: {e}") from e

    async def ping(self) -> None:
        def _ping():
            with self.session_factory() as db:
                db.execute(text("SELECT 1"))

        try:
            await asyncio.to_thread(_ping)
        except (OperationalError, InterfaceError, DisconnectionError) as e:
            raise TransientInfra(f"Database unavailable: {e}") from e
