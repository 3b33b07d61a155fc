"""
Batch validator for multi-line movement submissions.

A batch shares one movement type and one reason code. It is accepted only if
every line is valid; callers persist nothing when any failure is reported.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import BatchValidationError, LineFailure, ValidationError
from db.database import Product, Warehouse
from services.availability import compute_available
from services.ledger import MovementType, ensure_reason_applies, parse_movement_type

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BatchLine:
    product_id: UUID
    warehouse_id: UUID
    quantity: int
    notes: Optional[str] = None


async def _existing_ids(db: AsyncSession, model, ids) -> set:
    if not ids:
        return set()
    res = await db.execute(select(model.id).where(model.id.in_(list(ids))))
    return set(res.scalars().all())


async def validate_batch(
    db: AsyncSession,
    movement_type,
    reason_code: str,
    lines: Sequence[BatchLine],
    exclude_order_id: Optional[UUID] = None,
    lock: bool = False,
) -> List[LineFailure]:
    """Return one LineFailure per problem found; an empty list means the batch may proceed.

    Batch-level problems (unknown type, unknown or inapplicable reason, no lines)
    raise ValidationError instead, since no line can be blamed for them.
    """
    mtype = parse_movement_type(movement_type)
    await ensure_reason_applies(db, reason_code, mtype)
    if not lines:
        raise ValidationError("batch must contain at least one line")

    failures: List[LineFailure] = []
    seen: Dict[Tuple[UUID, UUID], int] = {}

    products = await _existing_ids(db, Product, {ln.product_id for ln in lines})
    warehouses = await _existing_ids(db, Warehouse, {ln.warehouse_id for ln in lines})

    # (product, warehouse) -> requested total over structurally valid lines
    requested: "OrderedDict[Tuple[UUID, UUID], int]" = OrderedDict()
    first_index: Dict[Tuple[UUID, UUID], int] = {}

    for idx, ln in enumerate(lines):
        ok = True
        qty = ln.quantity
        if isinstance(qty, bool) or not isinstance(qty, int):
            failures.append(LineFailure(idx, "quantity", "quantity must be an integer"))
            ok = False
        elif qty < 0 or (qty == 0 and mtype != MovementType.ADJUSTMENT):
            bound = ">= 0" if mtype == MovementType.ADJUSTMENT else "> 0"
            failures.append(LineFailure(idx, "quantity", f"quantity must be {bound}"))
            ok = False

        if ln.product_id not in products:
            failures.append(LineFailure(idx, "product_id", f"Product not found: {ln.product_id}"))
            ok = False
        if ln.warehouse_id not in warehouses:
            failures.append(LineFailure(idx, "warehouse_id", f"Warehouse not found: {ln.warehouse_id}"))
            ok = False

        pair = (ln.product_id, ln.warehouse_id)
        if pair in seen:
            failures.append(
                LineFailure(idx, "product_id", f"Duplicate product/warehouse in batch (same as line {seen[pair]})")
            )
            ok = False
        else:
            seen[pair] = idx

        if ok:
            requested[pair] = requested.get(pair, 0) + qty
            first_index.setdefault(pair, idx)

    if mtype == MovementType.OUT:
        for pair, qty in requested.items():
            product_id, warehouse_id = pair
            available = await compute_available(
                db, product_id, warehouse_id, exclude_order_id=exclude_order_id, lock=lock
            )
            if qty > available:
                failures.append(
                    LineFailure(
                        first_index[pair],
                        "quantity",
                        f"Not enough stock. Available={available} requested={qty}",
                    )
                )

    if failures:
        logger.info(
            "batch_rejected",
            movement_type=mtype.value,
            lines=len(lines),
            failures=len(failures),
        )
    return failures


async def ensure_valid_batch(
    db: AsyncSession,
    movement_type,
    reason_code: str,
    lines: Sequence[BatchLine],
    exclude_order_id: Optional[UUID] = None,
    lock: bool = False,
) -> None:
    failures = await validate_batch(
        db, movement_type, reason_code, lines, exclude_order_id=exclude_order_id, lock=lock
    )
    if failures:
        raise BatchValidationError(failures)
