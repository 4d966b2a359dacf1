"""
Storage factory for creating and managing storage backend instances.

The engine is process-wide: created on first use (or at application
startup) and disposed at shutdown. Every request gets its own session and
storage object.
"""

import logging
from typing import Generator, Optional

from fastapi import Depends
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from pub_registry.config import get_settings
from pub_registry.registry import PublicationRegistry
from pub_registry.storage.backends.postgres import PostgresRegistryStorage
from pub_registry.storage.interfaces import RegistryStorageInterface

logger = logging.getLogger(__name__)

# Singleton engine
_engine: Optional[Engine] = None


def make_engine(db_url: str) -> Engine:
    """
    Create an engine for ``db_url``.

    SQLite URLs get pysqlite's transaction handling turned off so that
    SQLAlchemy controls BEGIN and SAVEPOINT itself; in-memory databases share
    one connection.
    """
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def get_engine() -> Engine:
    """
    Returns a singleton instance of the SQLAlchemy engine.
    """
    global _engine
    if _engine is None:
        db_url = get_settings().DATABASE_URL
        if not db_url:
            raise ValueError("DATABASE_URL is not set.")
        _engine = make_engine(db_url)
        logger.info("Created database engine for %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_storage() -> Generator[RegistryStorageInterface, None, None]:
    """
    FastAPI dependency that provides a storage instance with a request-scoped session.
    """
    engine = get_engine()
    with Session(engine) as session:
        storage = PostgresRegistryStorage(session)
        try:
            yield storage
        finally:
            storage.close()


def get_registry(storage: RegistryStorageInterface = Depends(get_storage)) -> PublicationRegistry:
    """FastAPI dependency wrapping the request's storage in a registry."""
    return PublicationRegistry(storage, get_settings())


def close_storage():
    """
    Closes the engine connection.
    """
    global _engine
    if _engine:
        _engine.dispose()
        _engine = None
