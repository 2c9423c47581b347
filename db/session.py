"""
db/session.py — Database Connection & Session Management
=========================================================
Async SQLAlchemy engine backing the persistent ledger store.
Used when LEDGER_STORE=sql; main.py calls init_db() on startup.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from config import settings
import logging

logger = logging.getLogger("veriid.db")


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine. Converts postgres:// URLs to asyncpg;
    pool sizing only applies to server databases (not SQLite).
    """
    url = url.replace("postgresql://", "postgresql+asyncpg://")
    kwargs = {"echo": echo}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
        )
    return create_async_engine(url, **kwargs)


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# Create async engine
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

# Session factory
AsyncSessionLocal = build_sessionmaker(engine)


class Base(DeclarativeBase):
    """Base class all database models inherit from."""
    pass


async def init_db(bind: AsyncEngine = None):
    """Create all tables on startup if they don't exist."""
    from db.models import (  # noqa — import triggers table registration
        IdentityRow, UsedDocument, AddressFingerprint, ProofPayload, LedgerEventRow
    )
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created / verified.")
