"""
Availability = current quantity minus quantities committed to OPEN sales orders.

The committed part is materialized on StockLevel.reserved_quantity: sales order
lines reserve when added and release when removed, cancelled or delivered.
"""

from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InsufficientStockError
from db.database import Order, OrderLine, StockLevel, utcnow
from services.stock import get_stock_level

logger = structlog.get_logger(__name__)


async def order_reservation(db: AsyncSession, order_id: UUID, product_id: UUID, warehouse_id: UUID) -> int:
    """Quantity one sales order holds for a product at a warehouse."""
    stmt = (
        select(func.coalesce(func.sum(OrderLine.quantity), 0))
        .join(Order, Order.id == OrderLine.order_id)
        .where(
            OrderLine.order_id == order_id,
            OrderLine.product_id == product_id,
            Order.warehouse_id == warehouse_id,
            Order.kind == "SALES",
        )
    )
    return int((await db.execute(stmt)).scalar_one() or 0)


async def compute_available(
    db: AsyncSession,
    product_id: UUID,
    warehouse_id: UUID,
    exclude_order_id: Optional[UUID] = None,
    lock: bool = False,
) -> int:
    stock = await get_stock_level(db, product_id, warehouse_id, lock=lock)
    if stock is None:
        return 0
    available = int(stock.quantity or 0) - int(stock.reserved_quantity or 0)
    if exclude_order_id is not None:
        available += await order_reservation(db, exclude_order_id, product_id, warehouse_id)
    return available


async def ensure_available(
    db: AsyncSession,
    product_id: UUID,
    warehouse_id: UUID,
    requested: int,
    exclude_order_id: Optional[UUID] = None,
    lock: bool = False,
) -> int:
    available = await compute_available(
        db, product_id, warehouse_id, exclude_order_id=exclude_order_id, lock=lock
    )
    if requested > available:
        logger.info(
            "insufficient_stock",
            product_id=str(product_id),
            warehouse_id=str(warehouse_id),
            available=available,
            requested=requested,
        )
        raise InsufficientStockError(available, requested, product_id, warehouse_id)
    return available


async def reserve(db: AsyncSession, product_id: UUID, warehouse_id: UUID, quantity: int) -> None:
    """Reserve stock for a sales line with one conditional UPDATE.

    The availability check and the increment are the same statement, so two
    concurrent line additions cannot both pass against the same units.
    """
    stmt = (
        update(StockLevel)
        .where(
            StockLevel.product_id == product_id,
            StockLevel.warehouse_id == warehouse_id,
            StockLevel.quantity - StockLevel.reserved_quantity >= quantity,
        )
        .values(reserved_quantity=StockLevel.reserved_quantity + quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    if res.rowcount == 0:
        available = await compute_available(db, product_id, warehouse_id)
        raise InsufficientStockError(available, quantity, product_id, warehouse_id)

    logger.info("stock_reserved", product_id=str(product_id), warehouse_id=str(warehouse_id), quantity=quantity)


async def release(db: AsyncSession, product_id: UUID, warehouse_id: UUID, quantity: int) -> None:
    stmt = (
        update(StockLevel)
        .where(StockLevel.product_id == product_id, StockLevel.warehouse_id == warehouse_id)
        .values(reserved_quantity=StockLevel.reserved_quantity - quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)
    logger.info("stock_released", product_id=str(product_id), warehouse_id=str(warehouse_id), quantity=quantity)
