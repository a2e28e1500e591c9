"""Database session management with connection pooling"""

from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from merchant_crm.config import Settings
from merchant_crm.domain.exceptions import ConcurrentModificationError


def create_session_factory(settings: Settings) -> sessionmaker:
    """Build the engine and session factory owned by one application instance"""
    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle_seconds,
    )
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request) -> Iterator[Session]:
    """Dependency injection for database sessions"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Commit everything done inside the block as one transaction.

    Any failure rolls the whole block back. A version-check failure on a
    pipeline or onboarding row surfaces as ConcurrentModificationError.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as e:
        db.rollback()
        raise ConcurrentModificationError(
            "Merchant was modified by another request; reload and retry"
        ) from e
    except Exception:
        db.rollback()
        raise
