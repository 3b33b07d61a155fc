"""
Purchase and sales orders: line editing, totals, and the fulfillment state machine.

Orders are created OPEN. Lines change only while OPEN, and every change is
followed by a full totals recompute from all current lines. Fulfilling
(receive for purchase, deliver for sales) or cancelling moves the order to a
terminal status exactly once.
"""

from collections import OrderedDict
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.errors import ConcurrentModificationError, NotFoundError, ValidationError
from db.database import Order, OrderLine, Product, Warehouse, atomic, utcnow
from services.availability import ensure_available, release, reserve
from services.batch import BatchLine, ensure_valid_batch
from services.ledger import MovementType, append_movement, parse_quantity
from services.stock import apply_movement, lock_stock_rows

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


class OrderKind(str, Enum):
    PURCHASE = "PURCHASE"
    SALES = "SALES"


class OrderStatus(str, Enum):
    OPEN = "OPEN"
    RECEIVED = "RECEIVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


_VALID_TRANSITIONS = {
    OrderKind.PURCHASE: {
        OrderStatus.OPEN: {OrderStatus.RECEIVED, OrderStatus.CANCELLED},
        OrderStatus.RECEIVED: set(),  # Terminal
        OrderStatus.CANCELLED: set(),  # Terminal
    },
    OrderKind.SALES: {
        OrderStatus.OPEN: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
        OrderStatus.COMPLETED: set(),  # Terminal
        OrderStatus.CANCELLED: set(),  # Terminal
    },
}

# Status reached by fulfill(), and the movement it emits per line
_FULFILLMENT = {
    OrderKind.PURCHASE: (OrderStatus.RECEIVED, MovementType.IN, "PURCHASE"),
    OrderKind.SALES: (OrderStatus.COMPLETED, MovementType.OUT, "SALE"),
}


def parse_order_kind(value) -> OrderKind:
    if isinstance(value, OrderKind):
        return value
    try:
        return OrderKind(str(value or "").strip().upper())
    except ValueError:
        raise ValidationError(f"Unknown order kind: {value!r}") from None


def can_transition(kind, current, target) -> bool:
    allowed = _VALID_TRANSITIONS[OrderKind(kind)].get(OrderStatus(current), set())
    return OrderStatus(target) in allowed


def _assert_can_transition(order: Order, target: OrderStatus) -> None:
    if not can_transition(order.kind, order.status, target):
        raise ValidationError(f"Cannot transition {order.kind} order from {order.status} to {target.value}")


def _money(x) -> Decimal:
    return Decimal(x).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_line_amounts(quantity: int, unit_price, tax_rate) -> Dict[str, Decimal]:
    base = Decimal(quantity) * Decimal(unit_price)
    tax = _money(base * Decimal(tax_rate))
    return {"tax": tax, "line_total": _money(base) + tax}


async def _load_order(db: AsyncSession, order_id: UUID, lock: bool = False) -> Order:
    stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update()
    order = (await db.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise NotFoundError(f"Order not found: {order_id}")
    return order


async def _order_lines(db: AsyncSession, order_id: UUID) -> List[OrderLine]:
    res = await db.execute(
        select(OrderLine)
        .where(OrderLine.order_id == order_id)
        .order_by(OrderLine.position)
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())


def _assert_open_for_edit(order: Order) -> None:
    if order.status != OrderStatus.OPEN.value:
        raise ValidationError(f"Order is {order.status}; lines can only change while OPEN")


async def recompute_totals(db: AsyncSession, order: Order) -> Order:
    """Recompute subtotal, tax and total from all current lines."""
    lines = await _order_lines(db, order.id)
    subtotal = sum((_money(Decimal(ln.quantity) * Decimal(ln.unit_price)) for ln in lines), Decimal("0.00"))
    tax = sum((Decimal(ln.tax) for ln in lines), Decimal("0.00"))
    order.subtotal = _money(subtotal)
    order.tax = _money(tax)
    order.total = _money(subtotal + tax)
    await db.flush()
    return order


async def get_order(db: AsyncSession, order_id: UUID) -> Order:
    res = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.lines).selectinload(OrderLine.product))
        .execution_options(populate_existing=True)
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise NotFoundError(f"Order not found: {order_id}")
    return order


async def list_orders(
    db: AsyncSession,
    kind: Optional[str] = None,
    status: Optional[str] = None,
    warehouse_id: Optional[UUID] = None,
    counterparty: Optional[str] = None,
    limit: int = 200,
) -> List[Order]:
    stmt = select(Order).options(selectinload(Order.lines).selectinload(OrderLine.product)).execution_options(populate_existing=True)
    if kind:
        stmt = stmt.where(Order.kind == parse_order_kind(kind).value)
    if status:
        stmt = stmt.where(Order.status == status.strip().upper())
    if warehouse_id:
        stmt = stmt.where(Order.warehouse_id == warehouse_id)
    if counterparty and counterparty.strip():
        stmt = stmt.where(Order.counterparty == counterparty.strip())
    res = await db.execute(stmt.order_by(Order.created_at.desc()).limit(limit))
    return list(res.scalars().all())


async def create_order(
    db: AsyncSession,
    *,
    kind,
    warehouse_id: UUID,
    currency: Optional[str] = None,
    counterparty: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    order_kind = parse_order_kind(kind)
    async with atomic(db):
        if await db.get(Warehouse, warehouse_id) is None:
            raise ValidationError(f"Warehouse not found: {warehouse_id}")
        order = Order(
            kind=order_kind.value,
            status=OrderStatus.OPEN.value,
            warehouse_id=warehouse_id,
            currency=(currency or settings.default_currency).strip().upper(),
            counterparty=(counterparty or "").strip() or None,
            subtotal=Decimal("0.00"),
            tax=Decimal("0.00"),
            total=Decimal("0.00"),
            notes=(notes or "").strip() or None,
        )
        db.add(order)
        await db.flush()

    logger.info("order_created", order_id=str(order.id), kind=order_kind.value, warehouse_id=str(warehouse_id))
    return await get_order(db, order.id)


async def add_line(
    db: AsyncSession,
    *,
    order_id: UUID,
    product_id: UUID,
    quantity: int,
    unit_price=0,
    tax_rate=0,
) -> OrderLine:
    """Append a line to an OPEN order.

    Sales lines reserve their quantity at the order's warehouse first; the
    reservation fails with InsufficientStockError when availability is short.
    """
    qty = parse_quantity(quantity)
    price = Decimal(str(unit_price))
    rate = Decimal(str(tax_rate))
    if price < 0:
        raise ValidationError("unit_price must be >= 0")
    if rate < 0 or rate > 1:
        raise ValidationError("tax_rate must be between 0 and 1")

    async with atomic(db):
        order = await _load_order(db, order_id, lock=True)
        _assert_open_for_edit(order)
        if await db.get(Product, product_id) is None:
            raise ValidationError(f"Product not found: {product_id}")

        lines = await _order_lines(db, order.id)
        if any(ln.product_id == product_id for ln in lines):
            raise ValidationError("Product is already on this order; remove the line to change it")

        if order.kind == OrderKind.SALES.value:
            await reserve(db, product_id, order.warehouse_id, qty)

        amounts = compute_line_amounts(qty, price, rate)
        next_position = (
            await db.execute(
                select(func.coalesce(func.max(OrderLine.position), -1)).where(OrderLine.order_id == order.id)
            )
        ).scalar_one() + 1
        line = OrderLine(
            order_id=order.id,
            product_id=product_id,
            position=next_position,
            quantity=qty,
            unit_price=_money(price),
            tax_rate=rate,
            tax=amounts["tax"],
            line_total=amounts["line_total"],
        )
        db.add(line)
        await db.flush()
        await recompute_totals(db, order)

    logger.info("order_line_added", order_id=str(order_id), line_id=str(line.id), product_id=str(product_id), quantity=qty)
    return line


async def remove_line(db: AsyncSession, *, order_id: UUID, line_id: UUID) -> Order:
    async with atomic(db):
        order = await _load_order(db, order_id, lock=True)
        _assert_open_for_edit(order)
        line = (
            await db.execute(select(OrderLine).where(OrderLine.id == line_id, OrderLine.order_id == order.id))
        ).scalar_one_or_none()
        if line is None:
            raise NotFoundError(f"Order line not found: {line_id}")

        if order.kind == OrderKind.SALES.value:
            await release(db, line.product_id, order.warehouse_id, int(line.quantity))

        await db.delete(line)
        await db.flush()
        await recompute_totals(db, order)

    logger.info("order_line_removed", order_id=str(order_id), line_id=str(line_id))
    return await get_order(db, order_id)


def _per_product(lines: List[OrderLine]) -> "OrderedDict[UUID, int]":
    out: "OrderedDict[UUID, int]" = OrderedDict()
    for ln in lines:
        out[ln.product_id] = out.get(ln.product_id, 0) + int(ln.quantity)
    return out


async def _compare_and_set_status(db: AsyncSession, order_id: UUID, target: OrderStatus, **values) -> None:
    res = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.OPEN.value)
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConcurrentModificationError()


async def fulfill(db: AsyncSession, order_id: UUID) -> Order:
    """Receive a purchase order or deliver a sales order, at most once.

    Runs as one transaction:
    1. lock the order row and require OPEN
    2. lock the stock row of every line, then for sales check availability per
       product, ignoring this order's own reservation
    3. OPEN -> terminal with a conditional UPDATE (0 rows -> ConcurrentModificationError)
    4. one movement per line through the batch validator, ledger and stock aggregate
    5. sales: release the reservation
    Any error rolls back all of it.
    """
    async with atomic(db):
        order = await _load_order(db, order_id, lock=True)
        kind = OrderKind(order.kind)
        target, movement_type, reason_code = _FULFILLMENT[kind]

        if order.status != OrderStatus.OPEN.value:
            raise ConcurrentModificationError(f"order already processed (status={order.status})")
        _assert_can_transition(order, target)

        lines = await _order_lines(db, order.id)
        if not lines:
            raise ValidationError("Cannot fulfill an order without lines")
        per_product = _per_product(lines)
        exclude = order.id if kind == OrderKind.SALES else None
        await lock_stock_rows(db, [(product_id, order.warehouse_id) for product_id in per_product])

        if kind == OrderKind.SALES:
            for product_id, qty in per_product.items():
                await ensure_available(db, product_id, order.warehouse_id, qty, exclude_order_id=exclude, lock=True)

        await _compare_and_set_status(db, order.id, target, fulfilled_at=utcnow())

        if kind == OrderKind.PURCHASE:
            note = f"Received from purchase order {order.id}"
        else:
            note = f"Delivered on sales order {order.id}"
        batch = [BatchLine(ln.product_id, order.warehouse_id, int(ln.quantity), notes=note) for ln in lines]
        await ensure_valid_batch(db, movement_type, reason_code, batch, exclude_order_id=exclude)

        for ln in batch:
            mv = await append_movement(
                db,
                product_id=ln.product_id,
                warehouse_id=ln.warehouse_id,
                movement_type=movement_type,
                quantity=ln.quantity,
                reason_code=reason_code,
                reference_table=kind.value,
                reference_id=order.id,
                notes=ln.notes,
                validated=True,
            )
            await apply_movement(db, mv)

        if kind == OrderKind.SALES:
            for product_id, qty in per_product.items():
                await release(db, product_id, order.warehouse_id, qty)

    logger.info("order_fulfilled", order_id=str(order_id), kind=kind.value, status=target.value, lines=len(lines))
    return await get_order(db, order_id)


async def cancel(db: AsyncSession, order_id: UUID) -> Order:
    """OPEN -> CANCELLED. Releases sales reservations and emits no movements."""
    async with atomic(db):
        order = await _load_order(db, order_id, lock=True)
        if order.status != OrderStatus.OPEN.value:
            raise ConcurrentModificationError(f"order already processed (status={order.status})")
        _assert_can_transition(order, OrderStatus.CANCELLED)

        await _compare_and_set_status(db, order.id, OrderStatus.CANCELLED, cancelled_at=utcnow())

        if order.kind == OrderKind.SALES.value:
            for product_id, qty in _per_product(await _order_lines(db, order.id)).items():
                await release(db, product_id, order.warehouse_id, qty)

    logger.info("order_cancelled", order_id=str(order_id), kind=order.kind)
    return await get_order(db, order_id)
