from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from linkflow.config import settings


def make_engine(database_url: str):
    """Create an engine; SQLite needs cross-thread access for worker threads"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)


engine = make_engine(settings.analytics_database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
