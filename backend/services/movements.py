"""
Manual stock submissions: single movement, batch, and warehouse transfer.

Each function is one transaction: ledger rows and stock upserts commit together
or not at all.
"""

import uuid
from typing import Dict, List, Optional, Sequence
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ValidationError
from db.database import Warehouse, atomic
from services.availability import ensure_available
from services.batch import BatchLine, ensure_valid_batch
from services.ledger import (
    MovementType,
    append_movement,
    ensure_product_and_warehouse,
    ensure_reason_applies,
    parse_movement_quantity,
    parse_movement_type,
    parse_quantity,
)
from services.stock import apply_movement, lock_stock_rows

logger = structlog.get_logger(__name__)

TRANSFER_REFERENCE = "TRANSFER"


async def submit_movement(
    db: AsyncSession,
    *,
    product_id: UUID,
    warehouse_id: UUID,
    movement_type,
    quantity: int,
    reason_code: str,
    notes: Optional[str] = None,
) -> Dict:
    mtype = parse_movement_type(movement_type)
    qty = parse_movement_quantity(mtype, quantity)

    async with atomic(db):
        await ensure_product_and_warehouse(db, product_id, warehouse_id)
        await ensure_reason_applies(db, reason_code, mtype)
        await lock_stock_rows(db, [(product_id, warehouse_id)])
        if mtype == MovementType.OUT:
            await ensure_available(db, product_id, warehouse_id, qty, lock=True)

        mv = await append_movement(
            db,
            product_id=product_id,
            warehouse_id=warehouse_id,
            movement_type=mtype,
            quantity=qty,
            reason_code=reason_code,
            notes=notes,
            validated=True,
        )
        stock = await apply_movement(db, mv)

    return {"movement": mv.to_schema, "stock": stock}


async def submit_batch(
    db: AsyncSession,
    *,
    movement_type,
    reason_code: str,
    lines: Sequence[BatchLine],
    reference_table: Optional[str] = None,
    reference_id: Optional[UUID] = None,
) -> List[Dict]:
    """Validate every line, then persist all of them in one transaction."""
    mtype = parse_movement_type(movement_type)
    lines = list(lines)

    out = []
    async with atomic(db):
        await ensure_valid_batch(db, mtype, reason_code, lines, lock=mtype == MovementType.OUT)
        await lock_stock_rows(db, [(ln.product_id, ln.warehouse_id) for ln in lines])
        for ln in lines:
            mv = await append_movement(
                db,
                product_id=ln.product_id,
                warehouse_id=ln.warehouse_id,
                movement_type=mtype,
                quantity=ln.quantity,
                reason_code=reason_code,
                reference_table=reference_table,
                reference_id=reference_id,
                notes=ln.notes,
                validated=True,
            )
            stock = await apply_movement(db, mv)
            out.append({"movement": mv.to_schema, "stock": stock})

    logger.info("batch_submitted", movement_type=mtype.value, lines=len(out))
    return out


async def transfer(
    db: AsyncSession,
    *,
    product_id: UUID,
    from_warehouse_id: UUID,
    to_warehouse_id: UUID,
    quantity: int,
    reason_code: str = "TRANSFER",
    notes: Optional[str] = None,
) -> Dict:
    """
    Move stock between two warehouses.

    - Creates two movement rows: OUT at the source, IN at the destination.
    - Both legs share reference_table='TRANSFER' and one transfer id in reference_id.
    - Requires enough available quantity at the source.
    """
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError("Source and destination warehouse must differ")
    qty = parse_quantity(quantity)
    transfer_id = uuid.uuid4()

    async with atomic(db):
        await ensure_product_and_warehouse(db, product_id, from_warehouse_id)
        if await db.get(Warehouse, to_warehouse_id) is None:
            raise ValidationError(f"Warehouse not found: {to_warehouse_id}")
        await ensure_reason_applies(db, reason_code, MovementType.OUT)
        await ensure_reason_applies(db, reason_code, MovementType.IN)

        await lock_stock_rows(db, [(product_id, from_warehouse_id), (product_id, to_warehouse_id)])
        await ensure_available(db, product_id, from_warehouse_id, qty, lock=True)

        out_mv = await append_movement(
            db,
            product_id=product_id,
            warehouse_id=from_warehouse_id,
            movement_type=MovementType.OUT,
            quantity=qty,
            reason_code=reason_code,
            reference_table=TRANSFER_REFERENCE,
            reference_id=transfer_id,
            notes=notes,
            validated=True,
        )
        out_stock = await apply_movement(db, out_mv)

        in_mv = await append_movement(
            db,
            product_id=product_id,
            warehouse_id=to_warehouse_id,
            movement_type=MovementType.IN,
            quantity=qty,
            reason_code=reason_code,
            reference_table=TRANSFER_REFERENCE,
            reference_id=transfer_id,
            notes=notes,
            validated=True,
        )
        in_stock = await apply_movement(db, in_mv)

    logger.info(
        "transfer_completed",
        transfer_id=str(transfer_id),
        product_id=str(product_id),
        from_warehouse_id=str(from_warehouse_id),
        to_warehouse_id=str(to_warehouse_id),
        quantity=qty,
    )
    return {
        "transfer_id": transfer_id,
        "product_id": product_id,
        "quantity": qty,
        "from": {"movement": out_mv.to_schema, "stock": out_stock},
        "to": {"movement": in_mv.to_schema, "stock": in_stock},
    }
