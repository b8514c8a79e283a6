"""Engine and session factory."""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from permitflow.core.config import get_settings

settings = get_settings()

engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit everything written inside the block, or nothing.

    Usage::

        with atomic(db):
            permit.status = "expired"
            db.add(event)
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
