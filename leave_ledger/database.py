"""Async SQLAlchemy engine and session management."""

import logging
from typing import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from leave_ledger.config import settings

logger = logging.getLogger(__name__)

# Async engine for FastAPI
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)

# Async session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yield an async database session.

    One request is one transaction: commit on success, roll back on any
    exception so a failed leave operation never leaves partial writes. A
    failing commit surfaces as ``StoreError`` like any other store failure.
    """
    # Deferred: leave_ledger.common imports Base from this module
    from leave_ledger.common.exceptions import StoreError

    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception("transaction commit failed")
            raise StoreError("commit", exc.__class__.__name__) from exc
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
