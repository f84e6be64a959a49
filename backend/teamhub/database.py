"""Database engine and transaction helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` and provides the helpers used by services,
the FastAPI application and tests.

Every state-changing workflow runs inside `atomic()`: a single
transaction that commits on success and rolls back on any error. Row
locks come from `SELECT ... FOR UPDATE` on PostgreSQL; SQLite has no
row locks, so every SQLite transaction is opened with `BEGIN IMMEDIATE`
which serializes writers on the database lock instead.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel, Session, create_engine

from .config import settings
from . import errors

logger = logging.getLogger("teamhub.database")


def build_engine(url: str, lock_timeout: float | None = None):
    """Create an engine with the lock discipline the services rely on.

    `lock_timeout` bounds how long a transaction waits for a conflicting
    lock before the driver gives up; the resulting `OperationalError`
    is reported to callers as a transient failure.
    """
    timeout = lock_timeout if lock_timeout is not None else settings.LOCK_TIMEOUT_SECONDS
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
        _install_sqlite_locking(engine)
        return engine
    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c lock_timeout={int(timeout * 1000)}"
    return create_engine(url, echo=False, pool_pre_ping=True, connect_args=connect_args)


def _install_sqlite_locking(engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself instead of pysqlite
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = build_engine(settings.DATABASE_URL)


def create_db_and_tables(bind=None):
    """Create database tables using SQLModel metadata.

    Intended for local development and tests; production deployments
    should manage the schema with a migration tool (alembic) instead.
    """
    from . import models  # noqa: F401  registers the tables
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine, expire_on_commit=False) as session:
        yield session


@contextmanager
def atomic(session: Session):
    """Run the enclosed block as one transaction on `session`.

    Lock timeouts and connection failures surface as `errors.Transient`
    so callers can retry them; everything else propagates unchanged
    after the rollback.
    """
    try:
        yield session
        session.commit()
    except OperationalError as exc:
        session.rollback()
        logger.warning("transaction_failed %s", exc.orig if exc.orig is not None else exc)
        raise errors.Transient() from exc
    except Exception:
        session.rollback()
        raise
