"""Engine and session helpers for the roster database."""

from __future__ import annotations

import logging
from typing import Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = "sqlite:///dutyroster.db"

# One engine (and connection pool) per URL for the life of the process
_engines: Dict[str, Engine] = {}


def create_db_engine(db_url: str = DEFAULT_DB_URL, echo: bool = False) -> Engine:
    engine = _engines.get(db_url)
    if engine is None:
        engine = create_engine(db_url, echo=echo)
        _engines[db_url] = engine
    return engine


def init_database(db_url: str = DEFAULT_DB_URL, reset: bool = False) -> Engine:
    """
    Create every roster table that does not exist yet.

    Args:
        db_url: SQLAlchemy database URL
        reset: Drop all tables first (deletes all data)
    """
    engine = create_db_engine(db_url)
    if reset:
        Base.metadata.drop_all(engine)
        logger.warning("Dropped all tables in %s", db_url)
    Base.metadata.create_all(engine)
    logger.info("Database ready: %s (%d tables)", db_url, len(Base.metadata.tables))
    return engine


def reset_database(db_url: str = DEFAULT_DB_URL) -> Engine:
    return init_database(db_url, reset=True)


def get_session(db_url: str = DEFAULT_DB_URL) -> Session:
    """Open a session whose objects stay readable after commit."""
    factory = sessionmaker(bind=create_db_engine(db_url), expire_on_commit=False)
    return factory()
