"""
Database Management and Configuration.

This module owns the asynchronous database engine for the Coded Signal API.
It uses SQLAlchemy's asyncio support with SQLModel tables, `aiosqlite` for
SQLite (development and tests) and `asyncpg` for PostgreSQL.

Key Components:
- `engine` / `async_session`: the module-level engine and session factory,
  built from `DATABASE_URL`. `configure_engine` rebuilds both, which is how
  tests point the whole application at a throwaway database.
- `session_scope`: the unit-of-work context manager every service uses. It
  translates driver failures into the API's error taxonomy: a uniqueness
  violation becomes `ConflictError`, anything else (including timeouts)
  becomes `DatabaseError`. Nothing is retried.
- `create_db_and_tables`: creates every SQLModel table at startup.
- `get_database_info`: diagnostic information for health checks.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from core import config
from core.exceptions import CodedSignalException, ConflictError, DatabaseError

# Register table metadata before create_all
from core import models  # noqa: F401

logger = logging.getLogger(__name__)

DATABASE_URL = config.DATABASE_URL


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine for SQLite or PostgreSQL"""
    if database_url.startswith("sqlite"):
        # SQLite gains nothing from pooling and aiosqlite connections are
        # bound to the loop that opened them
        return create_async_engine(
            database_url,
            connect_args={
                "check_same_thread": False,
                "timeout": config.DB_TIMEOUT_SECONDS,
            },
            echo=False,
            poolclass=NullPool,
        )

    return create_async_engine(
        database_url,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Validate connections before use
        pool_timeout=config.DB_TIMEOUT_SECONDS,
        connect_args={"command_timeout": config.DB_TIMEOUT_SECONDS},
        echo=False,
    )


engine: AsyncEngine = build_engine(DATABASE_URL)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def configure_engine(database_url: str) -> AsyncEngine:
    """Point the module-level engine and session factory at another database"""
    global engine, async_session, DATABASE_URL
    DATABASE_URL = database_url
    engine = build_engine(database_url)
    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    logger.info("Database engine configured")
    return engine


@asynccontextmanager
async def session_scope(operation: str = "query") -> AsyncIterator[AsyncSession]:
    """
    Open a session for one unit of work.

    Callers commit explicitly. Any uncommitted work is rolled back when the
    block exits with an error.
    """
    async with async_session() as session:
        try:
            yield session
        except CodedSignalException:
            await session.rollback()
            raise
        except IntegrityError as e:
            await session.rollback()
            logger.warning(f"Integrity error during {operation}: {e.orig}")
            raise ConflictError("Resource already exists") from e
        except asyncio.TimeoutError as e:
            await session.rollback()
            logger.error(f"Database timeout during {operation}")
            raise DatabaseError(operation, "timeout") from e
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Database error during {operation}: {e}", exc_info=True)
            raise DatabaseError(operation, type(e).__name__) from e


async def create_db_and_tables():
    """
    Initialize the database and create all tables.
    Called during application startup.
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")
        raise


def _database_type(database_url: Optional[str] = None) -> str:
    url = database_url or DATABASE_URL
    return "postgresql" if "postgresql" in url else "sqlite"


async def get_database_info():
    """
    Get basic database information for health checks.
    """
    try:
        async with async_session() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            connection_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        connection_healthy = False

    return {
        "database_url": DATABASE_URL.split("@")[1]
        if "@" in DATABASE_URL
        else "masked",  # Hide credentials
        "connection_healthy": connection_healthy,
        "database_type": _database_type(),
    }
