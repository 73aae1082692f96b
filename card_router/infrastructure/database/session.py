"""Decision Log engine and session factory"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from card_router.config import settings


def build_engine(database_url: str, concurrent_authorizations: int) -> Engine:
    """
    Each in-flight authorization holds at most one connection, for its
    duplicate lookup or its append, so the pool follows the worker pool size.
    """
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=min(concurrent_authorizations, 16),
        max_overflow=concurrent_authorizations,
    )


engine = build_engine(settings.database_url, settings.max_concurrent_authorizations)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Read session for the decision query endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
