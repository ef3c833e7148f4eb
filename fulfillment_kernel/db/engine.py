"""
Module: fulfillment_kernel.db.engine
Responsibility: The persistence handle.  ``Database`` owns one SQLAlchemy
    engine and its session factory, and provides the transactional scopes
    every operation runs in.
Architecture position: Kernel > DB.  May import from db/base.py.  Models are
    imported lazily by create_tables() so that Base.metadata is complete.

Invariants enforced:
    - No module-level engine: a ``Database`` is constructed by the process
      entry point, injected into whatever needs it, and disposed on shutdown.
    - One transaction per scope: session_scope() commits on normal exit and
      rolls back on any exception.  Services only flush.
    - Storage conflicts (deadlock, serialization failure, lock timeout,
      unique-key race) surface as TransactionAbortError so callers can retry.
    - SQLite runs with explicit ``BEGIN IMMEDIATE`` so savepoints work and
      writers serialize; PostgreSQL runs READ COMMITTED with row locks
      (SELECT ... FOR UPDATE) taken by the repositories.

Failure modes:
    - TransactionAbortError on retryable storage conflicts.
    - Any other exception raised by the work propagates after rollback.
"""

from contextlib import contextmanager
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fulfillment_kernel.exceptions import TransactionAbortError
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.engine")

T = TypeVar("T")

# Driver messages / SQLSTATEs that mean "retry the whole transaction"
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
_RETRYABLE_MARKERS = (
    "deadlock",
    "could not serialize",
    "database is locked",
    "lock timeout",
    "lock wait timeout",
)


def _is_retryable(exc: DBAPIError) -> bool:
    sqlstate = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


class Database:
    """
    Explicitly constructed persistence handle.

    Contract:
        Created once by the process entry point from a database URL and
        passed to the components that open transactions.  ``dispose()``
        releases pooled connections on shutdown.

    Guarantees:
        - session_scope() yields a session whose work is committed
          atomically or not at all.
        - Sessions use expire_on_commit=False so results stay readable
          after the scope exits.

    Non-goals:
        - Does NOT retry.  Retrying is the caller's decision (see
          fulfillment_jobs.dispatcher).
    """

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        pool_size: int = 10,
        max_overflow: int = 5,
        busy_timeout_seconds: int = 30,
    ):
        self.url = make_url(url)
        self.engine = self._build_engine(
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            busy_timeout_seconds=busy_timeout_seconds,
        )
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

        logger.info(
            "engine_initialized",
            extra={
                "dialect": self.engine.dialect.name,
                "database": self.url.database,
                "echo": echo,
            },
        )

    @classmethod
    def from_settings(cls, settings) -> "Database":
        """Build from a ``fulfillment_config.DatabaseSettings``."""
        return cls(
            settings.url,
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            busy_timeout_seconds=settings.busy_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Engine construction
    # ------------------------------------------------------------------

    def _build_engine(
        self,
        *,
        echo: bool,
        pool_size: int,
        max_overflow: int,
        busy_timeout_seconds: int,
    ) -> Engine:
        if self.url.get_backend_name() != "sqlite":
            return create_engine(
                self.url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,
                isolation_level="READ COMMITTED",
            )

        options: dict = {
            "echo": echo,
            "connect_args": {
                "check_same_thread": False,
                "timeout": busy_timeout_seconds,
            },
        }
        if self.url.database in (None, "", ":memory:"):
            # One shared connection, otherwise each checkout sees an empty database
            options["poolclass"] = StaticPool
        engine = create_engine(self.url, **options)

        # pysqlite's implicit transaction handling breaks SAVEPOINT;
        # take over BEGIN so nested transactions and writer locks are real.
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    # ------------------------------------------------------------------
    # Sessions and transactions
    # ------------------------------------------------------------------

    def new_session(self) -> Session:
        """Return a new, unmanaged session. The caller owns its lifecycle."""
        return self._session_factory()

    @contextmanager
    def session_scope(self, operation: str | None = None) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Postconditions: On normal exit, the session is committed and closed.
            On exception, the session is rolled back and closed and the
            exception re-raised (retryable storage conflicts re-raised as
            TransactionAbortError).
        """
        session = self._session_factory()
        logger.debug("transaction_started", extra={"operation": operation})
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed", extra={"operation": operation})
        except OperationalError as exc:
            session.rollback()
            logger.warning(
                "transaction_rolled_back",
                extra={"operation": operation},
                exc_info=True,
            )
            if _is_retryable(exc):
                raise TransactionAbortError(str(exc.orig), operation) from exc
            raise
        except DBAPIError as exc:
            session.rollback()
            logger.warning(
                "transaction_rolled_back",
                extra={"operation": operation},
                exc_info=True,
            )
            if not isinstance(exc, IntegrityError) and _is_retryable(exc):
                raise TransactionAbortError(str(exc.orig), operation) from exc
            raise
        except Exception:
            session.rollback()
            logger.warning(
                "transaction_rolled_back",
                extra={"operation": operation},
                exc_info=True,
            )
            raise
        finally:
            session.close()

    def run_in_transaction(
        self, work: Callable[[Session], T], operation: str | None = None
    ) -> T:
        """
        Unit of work: run ``work(session)`` in one transaction and return
        its result.  The caller supplies only the work; commit and rollback
        are handled here.
        """
        with self.session_scope(operation) as session:
            return work(session)

    # ------------------------------------------------------------------
    # Schema and lifecycle
    # ------------------------------------------------------------------

    def create_tables(self) -> None:
        """Create every table registered on Base.metadata."""
        from fulfillment_kernel.db.base import Base
        import fulfillment_kernel.models  # noqa: F401
        import fulfillment_kernel.services.sequence_service  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})

    def drop_tables(self) -> None:
        """Drop all tables. Use with caution - primarily for testing."""
        from fulfillment_kernel.db.base import Base

        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()
        logger.info("engine_disposed", extra={"database": self.url.database})
