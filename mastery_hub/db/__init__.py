"""Persistence: SQLAlchemy engine, ORM tables and row mappers."""

from mastery_hub.db.database import (
    get_engine,
    get_session_factory,
    init_db,
    make_engine,
    make_session_factory,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_db",
    "make_engine",
    "make_session_factory",
    "session_scope",
]
