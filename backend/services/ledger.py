"""
Movement ledger: the append-only record of stock-changing events.

IN and OUT quantities are positive; an ADJUSTMENT quantity is the counted
balance and may be zero. The type decides the effect on stock (IN adds, OUT
subtracts, ADJUSTMENT sets the balance). There is no update or
delete path: corrections are new compensating movements.
"""

from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import List, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ValidationError
from db.database import InventoryMovement, MovementReason, Product, Warehouse

logger = structlog.get_logger(__name__)


class MovementType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"


def parse_movement_type(value) -> MovementType:
    if isinstance(value, MovementType):
        return value
    try:
        return MovementType((str(value or "")).strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown movement type: {value!r}") from None


def parse_quantity(value, allow_zero: bool = False) -> int:
    # Whole units only; bool is an int subclass and never a valid quantity.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"quantity must be an integer, got {value!r}")
    if allow_zero and value < 0:
        raise ValidationError("quantity must be >= 0")
    if not allow_zero and value <= 0:
        raise ValidationError("quantity must be > 0")
    return value


def parse_movement_quantity(movement_type: MovementType, value) -> int:
    """IN and OUT move at least one unit; an ADJUSTMENT may count a bin as empty."""
    return parse_quantity(value, allow_zero=movement_type == MovementType.ADJUSTMENT)


async def get_reason(db: AsyncSession, reason_code: str) -> Optional[MovementReason]:
    code = (reason_code or "").strip().upper()
    if not code:
        return None
    res = await db.execute(select(MovementReason).where(MovementReason.code == code))
    return res.scalar_one_or_none()


async def ensure_reason_applies(db: AsyncSession, reason_code: str, movement_type: MovementType) -> MovementReason:
    reason = await get_reason(db, reason_code)
    if reason is None:
        raise ValidationError(f"Unknown reason code: {reason_code!r}")
    if not reason.applies(movement_type.value):
        raise ValidationError(
            f"Reason {reason.code} does not apply to {movement_type.value} movements"
        )
    return reason


async def ensure_product_and_warehouse(db: AsyncSession, product_id: UUID, warehouse_id: UUID) -> None:
    product = await db.get(Product, product_id)
    if product is None:
        raise ValidationError(f"Product not found: {product_id}")
    warehouse = await db.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise ValidationError(f"Warehouse not found: {warehouse_id}")


async def append_movement(
    db: AsyncSession,
    *,
    product_id: UUID,
    warehouse_id: UUID,
    movement_type,
    quantity: int,
    reason_code: str,
    reference_table: Optional[str] = None,
    reference_id: Optional[UUID] = None,
    notes: Optional[str] = None,
    validated: bool = False,
) -> InventoryMovement:
    """Insert one immutable movement row and flush it so its ledger id is assigned.

    Does not touch the stock aggregate and does not commit; callers pair it with
    `services.stock.apply_movement` inside their own transaction. Pass
    ``validated=True`` when the batch validator already checked references.
    """
    mtype = parse_movement_type(movement_type)
    qty = parse_movement_quantity(mtype, quantity)
    code = (reason_code or "").strip().upper()

    if not validated:
        await ensure_product_and_warehouse(db, product_id, warehouse_id)
        await ensure_reason_applies(db, code, mtype)

    mv = InventoryMovement(
        product_id=product_id,
        warehouse_id=warehouse_id,
        movement_type=mtype.value,
        quantity=qty,
        reason_code=code,
        reference_table=reference_table,
        reference_id=reference_id,
        notes=(notes or "").strip() or None,
    )
    db.add(mv)
    await db.flush()

    logger.info(
        "movement_appended",
        movement_id=mv.id,
        product_id=str(product_id),
        warehouse_id=str(warehouse_id),
        movement_type=mtype.value,
        quantity=qty,
        reason_code=code,
        reference_table=reference_table,
    )
    return mv


async def list_movements(
    db: AsyncSession,
    *,
    product_id: Optional[UUID] = None,
    warehouse_id: Optional[UUID] = None,
    movement_type: Optional[str] = None,
    reference_table: Optional[str] = None,
    reference_id: Optional[UUID] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    limit: int = 200,
) -> List[InventoryMovement]:
    stmt = select(InventoryMovement)
    if product_id:
        stmt = stmt.where(InventoryMovement.product_id == product_id)
    if warehouse_id:
        stmt = stmt.where(InventoryMovement.warehouse_id == warehouse_id)
    if movement_type:
        stmt = stmt.where(InventoryMovement.movement_type == parse_movement_type(movement_type).value)
    if reference_table:
        stmt = stmt.where(InventoryMovement.reference_table == reference_table.strip().upper())
    if reference_id:
        stmt = stmt.where(InventoryMovement.reference_id == reference_id)
    if from_date:
        start_dt = datetime.combine(from_date, time.min)
        stmt = stmt.where(InventoryMovement.created_at >= start_dt)
    if to_date:
        end_excl = datetime.combine(to_date, time.min) + timedelta(days=1)
        stmt = stmt.where(InventoryMovement.created_at < end_excl)

    stmt = stmt.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc()).limit(limit)
    res = await db.execute(stmt)
    return list(res.scalars().all())
