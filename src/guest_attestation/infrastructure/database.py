"""Database connection and session management for Guest Attestation Service."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool

from guest_attestation.config import settings

# Base class for all ORM models
Base = declarative_base()


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def create_db_engine(database_url: str | None = None) -> Engine:
    """
    Create a SQLAlchemy engine for the configured database.

    PostgreSQL gets a connection pool and UTC/statement timeout settings.
    SQLite (local runs and tests) gets driver-level autocommit disabled and
    BEGIN IMMEDIATE on every transaction, so concurrent writers queue on
    the database lock instead of failing mid-transaction, and SAVEPOINTs
    behave as they do on PostgreSQL.

    Args:
        database_url: Connection URL. If None, uses settings.database_url

    Returns:
        Configured SQLAlchemy engine
    """
    url = database_url or settings.database_url

    if is_sqlite_url(url):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=settings.debug,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):  # type: ignore
            # Let SQLAlchemy emit BEGIN itself
            dbapi_conn.isolation_level = None
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def do_begin(conn):  # type: ignore
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=settings.debug,
    )

    @event.listens_for(engine, "connect")
    def set_postgresql_pragma(dbapi_conn, connection_record):  # type: ignore
        cursor = dbapi_conn.cursor()
        cursor.execute("SET timezone='UTC'")
        cursor.execute("SET statement_timeout='30000'")
        cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


# Global engine and session factory (initialized on import, connects lazily)
engine = create_db_engine()
SessionLocal = create_session_factory(engine)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            SqlAttestationStore(session).get_by_id(attestation_id)

    Automatically commits on success, rolls back on exception.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """
    Initialize database schema (create all tables).

    WARNING: This should only be used for local runs and tests. In production, use Alembic migrations.

    Args:
        engine: Optional engine to use. If None, uses global engine.
    """
    # Register models on Base.metadata
    from guest_attestation.infrastructure import models  # noqa: F401

    target_engine = engine or globals()['engine']
    Base.metadata.create_all(bind=target_engine)


def drop_all_tables(engine: Engine | None = None) -> None:
    """
    Drop all tables in the database.

    WARNING: This is destructive and should only be used for testing.
    """
    target_engine = engine or globals()['engine']
    Base.metadata.drop_all(bind=target_engine)
