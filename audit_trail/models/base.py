"""
Database engine, session management, and base model.

This module is the foundation for all database operations.
Every model inherits from Base. Every request gets a session
from get_db().
"""

import sqlite3

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from audit_trail.config import get_settings

settings = get_settings()


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


@event.listens_for(Engine, "connect")
def register_sqlite_functions(dbapi_connection, connection_record):
    """
    Replace SQLite's ASCII-only lower() with Python's str.lower.

    Free-text search compares lower(column) against a term lowered
    in Python; both sides must fold the same characters.
    """
    if isinstance(dbapi_connection, sqlite3.Connection):
        dbapi_connection.create_function(
            "lower", 1, _unicode_lower, deterministic=True
        )


def engine_options(url: str) -> dict:
    """
    Extra create_engine arguments for the given database URL.

    A streaming export resumes its session on whichever worker
    thread serves the next chunk, which SQLite refuses unless
    check_same_thread is off.
    """
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {}


# --- Engine ---
# pool_pre_ping=True tests connections before using them,
# so a restarted database surfaces as a fresh connection
# instead of a failed append.
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    **engine_options(settings.DATABASE_URL),
)

# --- Session Factory ---
# autocommit=False: the store decides when an append is
# durable. autoflush=False: SQL is only sent on an explicit
# flush or commit.
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


# --- Base Model Class ---
class Base(DeclarativeBase):
    pass


# --- Dependency for FastAPI ---
def get_db():
    """
    Provide a database session for a single request.

    The try/finally pattern ensures the session is always
    closed, even if the endpoint raises or a streaming
    response is abandoned by the client.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
