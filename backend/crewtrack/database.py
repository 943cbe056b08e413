from __future__ import annotations

import logging
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .errors import PersistenceError

logger = logging.getLogger(__name__)

DATABASE_URL = f"sqlite:///{settings.sqlite_path}"

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    future=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit(db: Session) -> None:
    """Flush and commit pending changes.

    Failures surface as PersistenceError. Object state is left as the caller
    mutated it; nothing is rolled back here.
    """
    try:
        db.flush()
        db.commit()
    except SQLAlchemyError as exc:
        logger.error("Commit failed: %s", exc)
        raise PersistenceError(f"Changes could not be saved: {exc.__class__.__name__}") from exc
