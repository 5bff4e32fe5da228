"""Engine setup and session scoping for the adaptation store."""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import config
from .models import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns the engine and hands out transactional sessions."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or config.DATABASE_URL

        if self.database_url.startswith("sqlite"):
            # One shared connection so in-memory databases survive across sessions
            self.engine = create_engine(
                self.database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(self.database_url, pool_pre_ping=True)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_tables(self):
        """Create the adaptation and pattern tables if they do not exist."""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self):
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Yield a session that commits on success and rolls back on error."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            logger.debug("Rolled back adaptation store transaction", exc_info=True)
            raise
        finally:
            session.close()

    def close(self):
        self.engine.dispose()


_db: Optional[Database] = None


def get_db() -> Database:
    """Return the process-wide database, creating its tables on first use."""
    global _db
    if _db is None:
        _db = Database()
        _db.create_tables()
        logger.debug(f"Opened adaptation store at {_db.database_url}")
    return _db


def close_db():
    global _db
    if _db is not None:
        _db.close()
        _db = None
