"""
Database configuration module for the Road Defect Reporting backend.
Handles SQLAlchemy engine setup, session management, the base model and
the unit-of-work helper every multi-step write goes through.
Supports PostgreSQL (production) and SQLite (local runs and tests) via DATABASE_URL.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from exceptions import RoadDefectError, StorageError

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url

if not DATABASE_URL:
    logger.error("DATABASE_URL environment variable is not set.")
    raise RuntimeError("DATABASE_URL is required.")


def _configure_sqlite(engine: Engine) -> None:
    """
    Make SQLite behave like the production store for our purposes:
    enforce foreign keys (cascade delete of detections) and let SQLAlchemy
    own BEGIN so that SAVEPOINTs work under pysqlite.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for the configured database."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every pooled connection gets its own empty database
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    _configure_sqlite(engine)
    return engine


engine = build_engine(DATABASE_URL)

# SessionLocal class will be used to create database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all ORM models
Base = declarative_base()


def get_db():
    """
    Dependency function that provides a database session.
    Ensures proper cleanup of database connections after each request.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, operation: str, **context) -> Iterator[Session]:
    """
    Run a block as one atomic unit of work.

    Commits when the block finishes. On any exception every write made in the
    block is rolled back before the error propagates. Domain errors pass
    through unchanged; SQLAlchemy failures are wrapped in StorageError with
    the original exception chained.

    Args:
        db: Session the block writes through
        operation: Operation name used in logs and error messages
        **context: Key identifiers logged alongside storage failures
    """
    try:
        yield db
        db.commit()
    except RoadDefectError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Storage failure during %s %s", operation, context)
        raise StorageError(operation, exc) from exc
    except Exception:
        db.rollback()
        logger.exception("Unexpected failure during %s %s", operation, context)
        raise
