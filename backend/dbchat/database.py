"""
Application database: engine, session factory and ORM base.

The application database holds the workspace connection
registry and the chat-session store.  It is SQLite by
default; any SQLAlchemy URL works.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase

from dbchat.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    """Driver options for *url*: SQLite is shared across threads."""
    if make_url(url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(
    settings.database_url,
    echo=False,
    **_engine_options(settings.database_url),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


class Base(DeclarativeBase):
    """Declarative base for the connection and chat tables."""


@contextmanager
def session_scope() -> Iterator[Session]:
    """Short-lived session for service code; always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db() -> Iterator[Session]:
    """
    FastAPI dependency yielding a request-scoped session.

    Yields:
        Session: SQLAlchemy database session.
    """
    with session_scope() as db:
        yield db


def init_db() -> None:
    """Create any missing tables; called once at startup."""
    from dbchat import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
