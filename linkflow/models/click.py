from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from linkflow.database.connection import Base


class ClickRecord(Base):
    """
    One persisted click event.

    Rows are inserted by the ingestor and never updated. event_key is
    derived from the event's content, so a redelivered event maps onto
    the row it already produced.
    """
    __tablename__ = "click_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    short_code = Column(String(20), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    referer = Column(String(2048), nullable=True)
    destination_url = Column(String(2048), nullable=True)
    event_key = Column(String(64), unique=True, nullable=True)
    inserted_at = Column(DateTime(timezone=True), server_default=func.now())
