"""Database Session Manager — the persistence handle passed to every handler factory.

Invariants:
    - One async engine per Cako instance; nothing connects until model load
    - Every session auto-rolls-back on exception (no partial commits leak)
    - All SQLAlchemy exceptions mapped to DatabaseError (core/errors.py)
    - DISABLED stands in for the handle when persistence is turned off; it is falsy

Design Decisions:
    - expire_on_commit=False: prevents lazy-load issues in async context
    - MetaData owned by the handle: sync() creates/drops exactly the tables
      the schema builder put there
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import MetaData, text
from sqlalchemy.exc import (
    ArgumentError, IntegrityError, OperationalError, DBAPIError, SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession, create_async_engine, async_sessionmaker,
)

from cako.config import ModelConfig
from cako.core.errors import ConfigurationError, DatabaseError

logger = logging.getLogger(__name__)


class PersistenceDisabled:
    """Sentinel handle for `useModel: false`."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "DISABLED"


DISABLED = PersistenceDisabled()


class Database:
    """Async engine, session factory and schema metadata."""

    def __init__(self, database_url, **engine_options):
        engine_options.setdefault("pool_pre_ping", True)
        engine_options.setdefault("pool_recycle", 3600)
        try:
            self.engine = create_async_engine(database_url, **engine_options)
        except (ArgumentError, TypeError) as e:
            raise ConfigurationError(f"Invalid persistence options: {e}") from e
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self.metadata = MetaData()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide session with auto-rollback on exception."""
        session = self._session_factory()
        try:
            yield session
        except IntegrityError as e:
            await session.rollback()
            logger.error(f"DB integrity error: {e}")
            raise DatabaseError("Integrity constraint violated", "commit") from e
        except OperationalError as e:
            await session.rollback()
            logger.error(f"DB operational error: {e}")
            raise DatabaseError("Connection or operational error", "execute") from e
        except DBAPIError as e:
            await session.rollback()
            logger.error(f"DB driver error: {e}")
            raise DatabaseError("Database driver error", "query") from e
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"SQLAlchemy error: {e}")
            raise DatabaseError("Database operation failed", "unknown") from e
        finally:
            await session.close()

    async def connect(self) -> None:
        """Open one connection to prove the database is reachable."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (OSError, SQLAlchemyError) as e:
            logger.error(f"DB connection failed: {e}")
            raise DatabaseError(str(e), "connect") from e

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            await self.connect()
            return True
        except DatabaseError:
            return False

    async def sync(self, force: bool = False) -> None:
        """Create missing tables; with force, drop every known table first."""
        try:
            async with self.engine.begin() as conn:
                if force:
                    await conn.run_sync(self.metadata.drop_all)
                await conn.run_sync(self.metadata.create_all)
        except (OSError, SQLAlchemyError) as e:
            logger.error(f"DB sync failed: {e}")
            raise DatabaseError(str(e), "sync") from e
        logger.info(
            f"Schema synced ({'drop and create' if force else 'create missing'})",
            extra={"table_count": len(self.metadata.tables)},
        )

    async def dispose(self) -> None:
        await self.engine.dispose()


def open_database(config: ModelConfig) -> Database | PersistenceDisabled:
    """Build the persistence handle described by `model` config (no connection yet)."""
    if not config.use_model:
        return DISABLED
    return Database(config.database_url(), **config.engine_options())
