"""Engine and session management."""

import logging
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def get_engine(database_url: str) -> Engine:
    """Engine for a database URL (cached per URL)."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args)


def session_factory(database_url: str) -> sessionmaker:
    return sessionmaker(bind=get_engine(database_url), expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)
    logger.info("Database schema ready: %s", engine.url.render_as_string(hide_password=True))


def get_session(factory: sessionmaker) -> Iterator[Session]:
    """Yield a session and close it afterwards (FastAPI dependency helper)."""
    session = factory()
    try:
        yield session
    finally:
        session.close()
