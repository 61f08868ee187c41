"""
Database configuration and session management for the campus orders service.

This module builds the SQLAlchemy engine and session factory from settings and
provides the request-scoped session dependency.
"""
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for declarative models
Base = declarative_base()


def build_engine(database_url: str, pool_timeout: int = 5) -> Engine:
    """
    Create the SQLAlchemy engine.

    SQLite URLs (used for local runs and tests) share one connection across
    threads when in-memory; every other backend gets a bounded pool wait so a
    saturated store surfaces as a storage error instead of hanging.

    Args:
        database_url: SQLAlchemy database URL
        pool_timeout: Seconds to wait for a pooled connection

    Returns:
        Engine: Configured engine
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_timeout=pool_timeout, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory bound to an engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request):
    """
    Dependency function that provides a database session.

    Yields:
        Session: SQLAlchemy database session

    Usage:
        Use as a FastAPI dependency to inject database sessions into route handlers.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
