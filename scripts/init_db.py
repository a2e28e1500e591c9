"""Create the schema and seed an admin user (idempotent).

Usage:
    DATABASE_URL=postgresql+psycopg2://... python scripts/init_db.py
"""

import logging
import os
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from merchant_crm.config import settings
from merchant_crm.domain.models import UserRole
from merchant_crm.infrastructure.database.models import Base
from merchant_crm.infrastructure.database.repositories import UserRepository
from merchant_crm.infrastructure.observability.logging import setup_logging


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url)
    Base.metadata.create_all(bind=engine)
    sm = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def init_db(database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@merchant-crm.local").strip().lower()
    admin_name = os.environ.get("ADMIN_NAME") or "Administrator"

    with _session_scope(database_url or settings.database_url) as s:
        users = UserRepository(s)
        admin = users.get_by_email(admin_email)
        if admin is None:
            admin = users.create_user(email=admin_email, name=admin_name, role=UserRole.ADMIN)
            logging.info("Admin user created", extra={"user_id": str(admin.id), "email": admin_email})
        else:
            logging.info("Admin user already present", extra={"user_id": str(admin.id), "email": admin_email})


if __name__ == "__main__":
    setup_logging(settings.log_level)
    init_db()
