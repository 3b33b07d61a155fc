from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from core.config import settings

DATABASE_URL = settings.database_url


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime columns (no timezone=True).
    return datetime.now(timezone.utc).replace(tzinfo=None)


engine = create_async_engine(DATABASE_URL, echo=settings.database_echo)
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Commit on success, roll back on any error.

    The request session may already have autobegun (earlier reads in the same
    handler), so this commits/rolls back the current transaction instead of
    calling `session.begin()`.
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise


# Register every model on Base.metadata and expose them from one place.
from .product import Product  # noqa: E402,F401
from .warehouse import Warehouse  # noqa: E402,F401
from .inventory.reason import MovementReason  # noqa: E402,F401
from .inventory.movement import InventoryMovement  # noqa: E402,F401
from .inventory.stock import StockLevel  # noqa: E402,F401
from .order import Order, OrderLine  # noqa: E402,F401
