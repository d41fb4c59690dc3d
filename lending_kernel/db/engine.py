"""
Module: lending_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities, wrapped in an injectable ``Storage``
    handle with an explicit lifecycle (open at process start, close at
    shutdown).  Every component receives the handle (or a session made from
    it) instead of reaching for a module-level pool.
Architecture position: Kernel > DB.  May import from db/base.py and
    exceptions.py.  MUST NOT import from services/, selectors/, domain/, or
    outer layers (except create_tables, which imports models to register them).

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED with explicit row-level
      locking (SELECT ... FOR UPDATE) where stronger isolation is needed,
      and a bounded ``lock_timeout`` so no lock wait hangs indefinitely.
    - SQLite (development and test backend) has no row locks; every
      transaction starts with ``BEGIN IMMEDIATE`` so writers serialize on
      the database lock, bounded by the busy timeout.  A waiting writer
      rereads committed state after acquiring the lock, which gives the same
      observable outcome as the PostgreSQL row lock.
    - Connection pooling via QueuePool with pre-ping to handle stale connections.

Failure modes:
    - RuntimeError when a closed Storage is used.
    - OperationalError on lock timeout / deadlock; services translate these
      through ``translate_storage_error`` into StorageFailureError.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from lending_kernel.exceptions import (
    DeadlockError,
    LockTimeoutError,
    StorageFailureError,
)
from lending_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_DEADLOCK_SQLSTATES = frozenset({"40P01"})
_LOCK_TIMEOUT_SQLSTATES = frozenset({"55P03"})


class Storage:
    """
    Injected storage handle: one engine plus its session factory.

    Contract:
        Created once at process start via ``Storage.open()`` (or
        ``Storage.from_config()``), passed to request handlers, and closed
        at shutdown.  Usable as a context manager.

    Guarantees:
        - ``session_scope()`` commits on normal exit, rolls back on exception.
        - Lock waits are bounded by ``lock_timeout_ms`` on both backends.

    Non-goals:
        - Does NOT cache any copy/loan state.
    """

    def __init__(self, engine: Engine, lock_timeout_ms: int):
        self._engine: Engine | None = engine
        self._session_factory: sessionmaker[Session] | None = sessionmaker(
            bind=engine, expire_on_commit=False
        )
        self.lock_timeout_ms = lock_timeout_ms

    @classmethod
    def open(
        cls,
        database_url: str,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_pre_ping: bool = True,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
        lock_timeout_ms: int = 5000,
    ) -> "Storage":
        """
        Initialize the SQLAlchemy engine from a database URL.

        Args:
            database_url: PostgreSQL or SQLite URL.
            echo: If True, log all SQL statements.
            pool_size: Number of connections to keep in the pool.
            max_overflow: Max connections beyond pool_size.
            pool_pre_ping: If True, test connections before use.
            pool_timeout: Seconds to wait for a pooled connection.
            pool_recycle: Seconds after which a connection is recycled.
            lock_timeout_ms: Upper bound on any single lock wait.

        Returns:
            An open Storage handle.
        """
        url = make_url(database_url)
        backend = url.get_backend_name()

        if backend == "sqlite":
            engine = _create_sqlite_engine(
                database_url, echo=echo, lock_timeout_ms=lock_timeout_ms,
                pool_size=pool_size, max_overflow=max_overflow,
                pool_timeout=pool_timeout,
            )
        else:
            connect_args = {}
            if url.get_driver_name() in ("psycopg2", "psycopg"):
                connect_args["options"] = f"-c lock_timeout={lock_timeout_ms}"
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=pool_pre_ping,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                isolation_level="READ COMMITTED",
                connect_args=connect_args,
            )

        configure_logging()
        logger.info(
            "engine_initialized",
            extra={
                "dialect": engine.dialect.name,
                "pool_size": pool_size,
                "max_overflow": max_overflow,
                "lock_timeout_ms": lock_timeout_ms,
                "echo": echo,
            },
        )
        return cls(engine, lock_timeout_ms)

    @classmethod
    def from_config(cls, settings) -> "Storage":
        """Open from a ``lending_config.schema.DatabaseSettings``."""
        return cls.open(
            settings.url,
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            pool_recycle=settings.pool_recycle,
            lock_timeout_ms=settings.lock_timeout_ms,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Storage is closed.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        """
        Session factory for multi-threaded callers.

        Each thread / request must create its own session from it.
        """
        if self._session_factory is None:
            raise RuntimeError("Storage is closed.")
        return self._session_factory

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def session(self) -> Session:
        """Get a new session instance."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Usage:
            with storage.session_scope() as session:
                session.add(entity)
                # Commits on successful exit, rolls back on exception
        """
        session = self.session()
        logger.debug("transaction_started")
        try:
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def create_tables(self) -> None:
        """Create all tables defined in the models (idempotent)."""
        from lending_kernel.db.base import Base
        import lending_kernel.models  # noqa: F401  (registers tables)

        Base.metadata.create_all(self.engine)
        logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})

    def drop_tables(self) -> None:
        """Drop all tables. Use with caution - primarily for testing."""
        from lending_kernel.db.base import Base
        import lending_kernel.models  # noqa: F401

        Base.metadata.drop_all(self.engine)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Dispose the engine and release all pooled connections."""
        if self._engine is not None:
            self._engine.dispose()
            logger.info("engine_disposed")
        self._engine = None
        self._session_factory = None

    @property
    def is_closed(self) -> bool:
        return self._engine is None

    def __enter__(self) -> "Storage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def _create_sqlite_engine(
    database_url: str,
    *,
    echo: bool,
    lock_timeout_ms: int,
    pool_size: int,
    max_overflow: int,
    pool_timeout: int,
) -> Engine:
    url = make_url(database_url)
    in_memory = url.database in (None, "", ":memory:")
    connect_args = {
        "check_same_thread": False,
        "timeout": lock_timeout_ms / 1000,
    }
    if in_memory:
        engine = create_engine(
            database_url, echo=echo, poolclass=StaticPool,
            connect_args=connect_args,
        )
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            connect_args=connect_args,
        )

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy so BEGIN IMMEDIATE and
        # SAVEPOINT are emitted exactly where the session asks for them.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(lock_timeout_ms)}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def translate_storage_error(exc: DBAPIError, operation: str) -> StorageFailureError:
    """
    Map a driver-level failure onto the retryable StorageFailure kinds.

    PostgreSQL reports SQLSTATE 40P01 for deadlocks and 55P03 for lock
    timeouts; SQLite reports "database is locked" once the busy timeout
    expires.
    """
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    lines = str(orig if orig is not None else exc).strip().splitlines()
    detail = lines[0] if lines else type(exc).__name__
    lowered = detail.lower()

    if sqlstate in _DEADLOCK_SQLSTATES or "deadlock" in lowered:
        return DeadlockError(operation, detail)
    if (
        sqlstate in _LOCK_TIMEOUT_SQLSTATES
        or "lock timeout" in lowered
        or "database is locked" in lowered
    ):
        return LockTimeoutError(operation, detail)
    return StorageFailureError(operation, detail)
