from __future__ import annotations

import logging

from sqlalchemy import text

import sitesync.models  # noqa: F401
from sitesync.db.base import Base
from sitesync.db.session import SessionLocal, engine

logger = logging.getLogger(__name__)


def bootstrap_database() -> None:
    """
    Ensure schema exists and run a read probe to validate the connection.
    Production schemas are managed by Alembic; create_all is a no-op for existing tables.
    """
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        db.execute(text('SELECT 1'))
        logger.info('DB bootstrap completed (schema ensured + read probe)')
    except Exception:
        logger.exception('DB bootstrap failed')
        raise
    finally:
        db.close()
