"""
Engine and session management.

One SQLAlchemy session per request: route dependencies use get_db_session,
the gateway middleware opens its own short-lived session from the same
factory. There is no caching layer in front of these reads.
"""

import logging
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from equiprofile.platform.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Rewrite legacy postgres:// URLs to the dialect name SQLAlchemy expects."""
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    In-memory SQLite gets a StaticPool so every session shares one
    connection (and therefore one database).
    """
    if not database_url:
        raise ValueError("DATABASE_URL is required")

    database_url = normalize_database_url(database_url)

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(database_url, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to engine."""
    return sessionmaker(autoflush=False, expire_on_commit=False, bind=engine)


def get_db_session(request: Request) -> Iterator[Session]:
    """
    FastAPI dependency yielding a request-scoped session.

    FastAPI caches dependencies per request, so every guard in a procedure
    chain and the handler itself share this one session.
    """
    session_factory = getattr(request.app.state, "session_factory", None)
    if session_factory is None:
        raise ServiceUnavailableError("Database not configured")

    session = session_factory()
    try:
        yield session
    finally:
        session.close()
