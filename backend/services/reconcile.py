"""
Reconciliation pass: replay the whole ledger and compare with the stock aggregate.

Reports drift, never repairs it. Also checks reserved quantities against the
lines of OPEN sales orders.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import InventoryMovement, Order, OrderLine, StockLevel
from services.kardex import final_balances, ledger_order

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Drift:
    product_id: UUID
    warehouse_id: UUID
    field: str  # 'quantity' | 'reserved_quantity'
    expected: int
    actual: int

    @property
    def to_schema(self):
        return {
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "field": self.field,
            "expected": self.expected,
            "actual": self.actual,
        }


async def _open_reservations(db: AsyncSession) -> Dict[Tuple[UUID, UUID], int]:
    stmt = (
        select(OrderLine.product_id, Order.warehouse_id, func.sum(OrderLine.quantity))
        .join(Order, Order.id == OrderLine.order_id)
        .where(Order.kind == "SALES", Order.status == "OPEN")
        .group_by(OrderLine.product_id, Order.warehouse_id)
    )
    res = await db.execute(stmt)
    return {(p, w): int(q or 0) for p, w, q in res.all()}


async def find_drift(db: AsyncSession) -> List[Drift]:
    movements = (await db.execute(ledger_order(select(InventoryMovement)))).scalars().all()
    expected_qty = final_balances(movements)
    expected_reserved = await _open_reservations(db)

    stock_rows = (
        await db.execute(select(StockLevel).execution_options(populate_existing=True))
    ).scalars().all()
    actual_qty = {(s.product_id, s.warehouse_id): int(s.quantity or 0) for s in stock_rows}
    actual_reserved = {(s.product_id, s.warehouse_id): int(s.reserved_quantity or 0) for s in stock_rows}

    drift: List[Drift] = []
    for key in sorted(set(expected_qty) | set(actual_qty), key=lambda k: (str(k[0]), str(k[1]))):
        exp, act = expected_qty.get(key, 0), actual_qty.get(key, 0)
        if exp != act:
            drift.append(Drift(key[0], key[1], "quantity", exp, act))
    for key in sorted(set(expected_reserved) | set(actual_reserved), key=lambda k: (str(k[0]), str(k[1]))):
        exp, act = expected_reserved.get(key, 0), actual_reserved.get(key, 0)
        if exp != act:
            drift.append(Drift(key[0], key[1], "reserved_quantity", exp, act))

    for d in drift:
        logger.warning(
            "stock_drift",
            product_id=str(d.product_id),
            warehouse_id=str(d.warehouse_id),
            field=d.field,
            expected=d.expected,
            actual=d.actual,
        )
    logger.info("reconciliation_finished", movements=len(movements), pairs=len(actual_qty), drift=len(drift))
    return drift
