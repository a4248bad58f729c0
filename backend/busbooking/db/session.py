"""
Process-wide database handle.

The Database owns the async engine and session factory. It is created once in
the application lifespan (init() at startup, close() at shutdown), stored on
app.state and injected into routes; nothing imports a global engine.

TRANSACTION DISCIPLINE
======================

Every operation that reads and then writes the seat ledger runs inside
Database.transaction(), a scoped transaction with a deadline:

  1. open a session and BEGIN
  2. run the caller's block under asyncio.timeout(deadline)
  3. COMMIT when the block exits normally
  4. ROLLBACK and release the connection on exception, cancellation or timeout

A stalled external call inside the block (QR rendering, for instance) can
therefore never hold a trip row lock past the deadline, and a timeout leaves
the ledger exactly as it was.

Mutual exclusion comes from SELECT ... FOR UPDATE on the trip row (see
services/seat_ledger.py). SQLite has no row locks, so on SQLite every
transaction starts with BEGIN IMMEDIATE and writers serialise on the database
lock instead.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from busbooking.core.config import get_settings
from busbooking.core.exceptions import TransactionTimeout
from busbooking.core.logging import get_logger
from busbooking.core.metrics import transaction_latency, transaction_timeouts

logger = get_logger(__name__)


class Database:
    def __init__(self, url: Optional[str] = None, transaction_timeout: Optional[float] = None):
        settings = get_settings()
        self.url = url or settings.DATABASE_URL
        self.transaction_timeout = (
            transaction_timeout
            if transaction_timeout is not None
            else settings.TRANSACTION_TIMEOUT_SECONDS
        )
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database.init() has not been called")
        return self._engine

    def init(self) -> "Database":
        if self._engine is not None:
            return self

        settings = get_settings()
        if self.is_sqlite:
            self._engine = create_async_engine(
                self.url,
                echo=False,
                connect_args={"timeout": 30},
            )
            _install_sqlite_locking(self._engine)
        else:
            self._engine = create_async_engine(
                self.url,
                echo=False,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_recycle=settings.DB_POOL_RECYCLE,
                pool_pre_ping=True,
            )

        self._sessionmaker = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.info("database_initialized", dialect=self._engine.dialect.name)
        return self

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
            logger.info("database_closed")

    def session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise RuntimeError("Database.init() has not been called")
        return self._sessionmaker()

    @asynccontextmanager
    async def transaction(self, timeout: Optional[float] = None) -> AsyncIterator[AsyncSession]:
        """Scoped transaction with deadline: commit on success, rollback on anything else."""
        deadline = timeout if timeout is not None else self.transaction_timeout
        started = time.perf_counter()
        async with self.session() as session:
            try:
                async with asyncio.timeout(deadline):
                    async with session.begin():
                        yield session
            except TimeoutError as exc:
                transaction_timeouts.inc()
                logger.warning("transaction_timeout", timeout_s=deadline)
                raise TransactionTimeout(deadline) from exc
            finally:
                transaction_latency.observe(time.perf_counter() - started)


def _install_sqlite_locking(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Take over BEGIN from the driver so we can make it IMMEDIATE
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def get_database(request: Request) -> Database:
    """FastAPI dependency resolving the handle created in the lifespan."""
    return request.app.state.database


async def get_db(database: Database = Depends(get_database)) -> AsyncIterator[AsyncSession]:
    """Read-only session for query endpoints."""
    async with database.session() as session:
        yield session
