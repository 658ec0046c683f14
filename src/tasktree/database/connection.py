"""
Database connection management using SQLAlchemy 2.0 async with aiosqlite.

Provides:
- SQLAlchemy AsyncEngine with the aiosqlite dialect
- Explicit BEGIN handling so every transaction is a real SQLite transaction
- Per-connection PRAGMAs (foreign keys, WAL journal)
- Read and write transaction context managers
"""

import contextlib
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import structlog
from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from tasktree.core.config import DatabaseConfig
from tasktree.core.exceptions import DatabaseError

logger = structlog.get_logger(__name__)


class ConnectionPool:
    """
    SQLAlchemy 2.0 async connection pool manager.

    One pool owns one SQLite file. A single process is expected to hold it.
    """

    def __init__(
        self,
        db_path: str,
        max_connections: int = 5,
        wal_mode: bool = True,
        foreign_keys: bool = True,
        echo: bool = False,
    ):
        """
        Initialize connection pool.

        Args:
            db_path: Path to SQLite database, or ":memory:"
            max_connections: Maximum connections in pool
            wal_mode: Switch the journal to WAL on connect
            foreign_keys: Enforce foreign keys (needed for cascading deletes)
            echo: Echo SQL statements
        """
        self.db_path = db_path
        self.max_connections = max_connections
        self.wal_mode = wal_mode
        self.foreign_keys = foreign_keys
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.stats = {
            "read_transactions": 0,
            "write_transactions": 0,
            "failed_transactions": 0,
        }

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "ConnectionPool":
        return cls(
            db_path=config.db_path,
            max_connections=config.max_connections,
            wal_mode=config.wal_mode,
            foreign_keys=config.foreign_keys,
            echo=config.echo,
        )

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    async def initialize(self) -> None:
        """Initialize the async engine."""
        if self.engine is not None:
            return

        logger.info(
            "Initializing SQLAlchemy async engine",
            db_path=str(self.db_path),
            max_connections=self.max_connections,
        )

        engine_kwargs: Dict[str, Any] = {
            "echo": self.echo,
            "connect_args": {"check_same_thread": False},
        }

        # StaticPool for :memory: databases, a sized queue pool for files
        if self.is_memory:
            database_url = "sqlite+aiosqlite:///:memory:"
            engine_kwargs["poolclass"] = StaticPool
        else:
            db_file = Path(self.db_path)
            db_file.parent.mkdir(parents=True, exist_ok=True)
            database_url = f"sqlite+aiosqlite:///{db_file}"
            engine_kwargs["pool_size"] = self.max_connections
            engine_kwargs["max_overflow"] = 0

        self.engine = create_async_engine(database_url, **engine_kwargs)
        self._install_sqlite_hooks(self.engine)

        logger.info("SQLAlchemy async engine initialized")

    def _install_sqlite_hooks(self, engine: AsyncEngine) -> None:
        """
        Take over transaction control from the sqlite3 driver.

        The driver only opens a transaction before DML, which leaves reads
        outside of it. Emitting BEGIN ourselves makes each read transaction a
        consistent snapshot and puts every write of a unit under one rollback.
        """
        wal_mode = self.wal_mode and not self.is_memory
        foreign_keys = self.foreign_keys

        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            if foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
            if wal_mode:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    async def close(self) -> None:
        """Close the engine and all connections."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            logger.info("Connection pool closed", stats=self.stats)

    @contextlib.asynccontextmanager
    async def read_transaction(self) -> AsyncIterator[AsyncConnection]:
        """
        Get async connection for read operations.

        The connection runs inside one transaction that is rolled back on exit.
        """
        if not self.engine:
            raise DatabaseError("Connection pool not initialized", error_code="POOL_NOT_INIT")

        async with self.engine.connect() as conn:
            self.stats["read_transactions"] += 1
            try:
                yield conn
            except Exception as e:
                logger.error("Read transaction failed", error=str(e))
                raise

    @contextlib.asynccontextmanager
    async def write_transaction(self) -> AsyncIterator[AsyncConnection]:
        """
        Get async connection for write operations with transaction.

        Commits on normal exit, rolls back on any exception.
        """
        if not self.engine:
            raise DatabaseError("Connection pool not initialized", error_code="POOL_NOT_INIT")

        async with self.engine.begin() as conn:
            self.stats["write_transactions"] += 1
            try:
                yield conn
            except Exception as e:
                self.stats["failed_transactions"] += 1
                logger.error("Write transaction failed, rolling back", error=str(e))
                raise

    async def health_check(self) -> bool:
        """
        Perform database health check.

        Returns:
            True if database is accessible
        """
        try:
            async with self.read_transaction() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except (DatabaseError, SQLAlchemyError) as e:
            logger.error("Health check failed", error=str(e))
            return False
