"""
Kardex: a product's movement history with the balance after each movement.

Balances are replayed from the ledger on every iteration (no snapshot cache):
IN adds, OUT subtracts, ADJUSTMENT sets the balance to its quantity. Each
entry carries the balance of its own (product, warehouse) pair and the
product-wide balance across warehouses at that point.
"""

from dataclasses import dataclass
from typing import AsyncIterator, Dict, Iterable, Iterator, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import InventoryMovement
from services.stock import apply_delta

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class KardexEntry:
    movement: InventoryMovement
    balance: int
    product_balance: int

    @property
    def to_schema(self):
        out = dict(self.movement.to_schema)
        out["balance"] = self.balance
        out["product_balance"] = self.product_balance
        return out


class _Fold:
    def __init__(self):
        self.balances: Dict[Tuple[UUID, UUID], int] = {}
        self.product_totals: Dict[UUID, int] = {}

    def step(self, mv: InventoryMovement) -> KardexEntry:
        key = (mv.product_id, mv.warehouse_id)
        before = self.balances.get(key, 0)
        after = apply_delta(before, mv.movement_type, int(mv.quantity))
        self.balances[key] = after
        total = self.product_totals.get(mv.product_id, 0) + after - before
        self.product_totals[mv.product_id] = total
        return KardexEntry(movement=mv, balance=after, product_balance=total)


def ledger_order(stmt):
    return stmt.order_by(InventoryMovement.created_at.asc(), InventoryMovement.id.asc())


def replay(movements: Iterable[InventoryMovement]) -> Iterator[KardexEntry]:
    """Fold movements already in ledger order into kardex entries."""
    fold = _Fold()
    for mv in movements:
        yield fold.step(mv)


def final_balances(movements: Iterable[InventoryMovement]) -> Dict[Tuple[UUID, UUID], int]:
    fold = _Fold()
    for mv in movements:
        fold.step(mv)
    return fold.balances


class Kardex:
    """Lazy, restartable view over one product's ledger.

    Nothing is read until iteration starts, and every ``async for`` runs a
    fresh query, so a second pass reflects movements appended in between.
    """

    def __init__(self, db: AsyncSession, product_id: UUID, warehouse_id: Optional[UUID] = None):
        self._db = db
        self.product_id = product_id
        self.warehouse_id = warehouse_id

    def statement(self):
        stmt = select(InventoryMovement).where(InventoryMovement.product_id == self.product_id)
        if self.warehouse_id is not None:
            stmt = stmt.where(InventoryMovement.warehouse_id == self.warehouse_id)
        return ledger_order(stmt)

    def __aiter__(self) -> AsyncIterator[KardexEntry]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[KardexEntry]:
        fold = _Fold()
        result = await self._db.stream_scalars(self.statement())
        try:
            async for mv in result:
                yield fold.step(mv)
        finally:
            await result.close()

    async def to_list(self) -> List[KardexEntry]:
        return [entry async for entry in self]

    async def final_balance(self) -> int:
        entries = await self.to_list()
        if not entries:
            return 0
        if self.warehouse_id is not None:
            return entries[-1].balance
        return entries[-1].product_balance


def reconstruct(db: AsyncSession, product_id: UUID, warehouse_id: Optional[UUID] = None) -> Kardex:
    logger.debug("kardex_requested", product_id=str(product_id), warehouse_id=str(warehouse_id) if warehouse_id else None)
    return Kardex(db, product_id, warehouse_id)
