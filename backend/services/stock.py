"""
Stock aggregator: the materialized current quantity per (product, warehouse).

Each ledger append is followed, in the same transaction, by exactly one upsert
here. IN adds, OUT subtracts, ADJUSTMENT overwrites. OUT is never clamped at zero.
"""

import uuid
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import InventoryMovement, Product, StockLevel, utcnow
from services.ledger import MovementType, parse_movement_type

logger = structlog.get_logger(__name__)


def _dialect_insert(db: AsyncSession):
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Stock upsert is not supported on dialect {name!r}")


def apply_delta(balance: int, movement_type, quantity: int) -> int:
    """Fold one movement into a running balance."""
    mtype = parse_movement_type(movement_type)
    if mtype == MovementType.IN:
        return balance + quantity
    if mtype == MovementType.OUT:
        return balance - quantity
    return quantity


async def apply_movement(db: AsyncSession, movement: InventoryMovement) -> dict:
    mtype = parse_movement_type(movement.movement_type)
    qty = int(movement.quantity)
    stock_tbl = StockLevel.__table__
    now = utcnow()

    if mtype == MovementType.IN:
        initial = qty
        new_quantity = stock_tbl.c.quantity + qty
    elif mtype == MovementType.OUT:
        initial = -qty
        new_quantity = stock_tbl.c.quantity - qty
    else:
        initial = qty
        new_quantity = qty

    insert = _dialect_insert(db)
    upsert = (
        insert(stock_tbl)
        .values(
            id=uuid.uuid4(),
            product_id=movement.product_id,
            warehouse_id=movement.warehouse_id,
            quantity=initial,
            reserved_quantity=0,
            updated_at=now,
        )
        .on_conflict_do_update(
            index_elements=[stock_tbl.c.product_id, stock_tbl.c.warehouse_id],
            set_={"quantity": new_quantity, "updated_at": now},
        )
        .returning(
            stock_tbl.c.product_id,
            stock_tbl.c.warehouse_id,
            stock_tbl.c.quantity,
            stock_tbl.c.reserved_quantity,
        )
    )
    upserted = (await db.execute(upsert)).first()

    out = {
        "product_id": upserted.product_id,
        "warehouse_id": upserted.warehouse_id,
        "quantity": int(upserted.quantity),
        "reserved_quantity": int(upserted.reserved_quantity),
    }
    if out["quantity"] < 0:
        logger.warning("stock_negative", **{k: str(v) for k, v in out.items()})
    return out


async def lock_stock_rows(db: AsyncSession, pairs: Iterable[Tuple[UUID, UUID]]) -> None:
    """Row-lock the stock aggregate of each (product, warehouse) before its ledger append.

    Movements are ordered by (created_at, id), both assigned at append time, so
    holding the row lock first makes ledger order follow the order in which
    upserts reach the row. A missing row is inserted empty so the first movement
    for a pair serializes on the unique key like every later one. Pairs are
    locked in a fixed order to avoid deadlocks between multi-row transactions.
    """
    stock_tbl = StockLevel.__table__
    insert = _dialect_insert(db)
    for product_id, warehouse_id in sorted(set(pairs), key=lambda p: (str(p[0]), str(p[1]))):
        await db.execute(
            insert(stock_tbl)
            .values(
                id=uuid.uuid4(),
                product_id=product_id,
                warehouse_id=warehouse_id,
                quantity=0,
                reserved_quantity=0,
                updated_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=[stock_tbl.c.product_id, stock_tbl.c.warehouse_id])
        )
        await get_stock_level(db, product_id, warehouse_id, lock=True)


async def get_stock_level(
    db: AsyncSession,
    product_id: UUID,
    warehouse_id: UUID,
    lock: bool = False,
) -> Optional[StockLevel]:
    # Core-level upserts/updates bypass the identity map, so always refresh.
    stmt = (
        select(StockLevel)
        .where(StockLevel.product_id == product_id, StockLevel.warehouse_id == warehouse_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def current_quantity(db: AsyncSession, product_id: UUID, warehouse_id: UUID) -> int:
    stock = await get_stock_level(db, product_id, warehouse_id)
    return int(stock.quantity) if stock else 0


async def list_stock(
    db: AsyncSession,
    warehouse_id: Optional[UUID] = None,
    product_id: Optional[UUID] = None,
) -> List[StockLevel]:
    stmt = select(StockLevel).execution_options(populate_existing=True)
    if warehouse_id:
        stmt = stmt.where(StockLevel.warehouse_id == warehouse_id)
    if product_id:
        stmt = stmt.where(StockLevel.product_id == product_id)
    res = await db.execute(stmt.order_by(StockLevel.product_id, StockLevel.warehouse_id))
    return list(res.scalars().all())


def classify_stock(total: int, min_stock: int) -> str:
    if total <= 0:
        return "critical"
    if min_stock and total <= min_stock:
        return "low"
    if min_stock and total > min_stock * 3:
        return "high"
    return "normal"


async def stock_summary(db: AsyncSession, warehouse_id: Optional[UUID] = None) -> List[Dict]:
    """Per-product totals across warehouses with a status classification."""
    join_on = StockLevel.product_id == Product.id
    if warehouse_id:
        join_on = join_on & (StockLevel.warehouse_id == warehouse_id)

    stmt = (
        select(
            Product,
            func.coalesce(func.sum(StockLevel.quantity), 0).label("total_quantity"),
            func.coalesce(func.sum(StockLevel.reserved_quantity), 0).label("total_reserved"),
        )
        .outerjoin(StockLevel, join_on)
        .where(Product.is_active.is_(True))
        .group_by(Product.id)
        .order_by(Product.sku)
    )
    res = await db.execute(stmt)

    out = []
    for product, total_quantity, total_reserved in res.all():
        total = int(total_quantity or 0)
        reserved = int(total_reserved or 0)
        out.append(
            {
                "product_id": product.id,
                "sku": product.sku,
                "name": product.name,
                "unit": product.unit,
                "min_stock": int(product.min_stock or 0),
                "total_quantity": total,
                "reserved_quantity": reserved,
                "available": total - reserved,
                "stock_status": classify_stock(total, int(product.min_stock or 0)),
            }
        )
    return out
