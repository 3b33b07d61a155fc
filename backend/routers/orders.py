from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from uuid import UUID

from db.database import get_async_session, Order as OrderModel
from schemas.orders import OrderCreate, OrderLineCreate, OrderLineRead, OrderRead
from services import orders as order_service

router = APIRouter()


def _serialize_order(o: OrderModel) -> OrderRead:
    lines_out: List[OrderLineRead] = []
    for ln in (o.lines or []):
        p = getattr(ln, "product", None)
        lines_out.append(
            OrderLineRead(
                id=ln.id,
                product_id=ln.product_id,
                product_sku=getattr(p, "sku", None) if p else None,
                product_name=getattr(p, "name", None) if p else None,
                position=ln.position,
                quantity=ln.quantity,
                unit_price=ln.unit_price,
                tax_rate=ln.tax_rate,
                tax=ln.tax,
                line_total=ln.line_total,
            )
        )
    return OrderRead(
        id=o.id,
        kind=o.kind,
        status=o.status,
        warehouse_id=o.warehouse_id,
        currency=o.currency,
        counterparty=o.counterparty,
        subtotal=o.subtotal,
        tax=o.tax,
        total=o.total,
        notes=o.notes,
        created_at=o.created_at,
        fulfilled_at=o.fulfilled_at,
        cancelled_at=o.cancelled_at,
        lines=lines_out,
    )


@router.post("/", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    db: AsyncSession = Depends(get_async_session),
):
    o = await order_service.create_order(
        db,
        kind=payload.kind,
        warehouse_id=payload.warehouse_id,
        currency=payload.currency,
        counterparty=payload.counterparty,
        notes=payload.notes,
    )
    return _serialize_order(o)


@router.get("/", response_model=List[OrderRead])
async def list_orders(
    kind: Optional[str] = Query(None, pattern="^(PURCHASE|SALES)$"),
    status_: Optional[str] = Query(None, alias="status", pattern="^(OPEN|RECEIVED|COMPLETED|CANCELLED)$"),
    warehouse_id: Optional[UUID] = None,
    counterparty: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_async_session),
):
    orders = await order_service.list_orders(
        db, kind=kind, status=status_, warehouse_id=warehouse_id, counterparty=counterparty, limit=limit
    )
    return [_serialize_order(o) for o in orders]


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    return _serialize_order(await order_service.get_order(db, order_id))


@router.post("/{order_id}/lines", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def add_order_line(
    order_id: UUID,
    payload: OrderLineCreate,
    db: AsyncSession = Depends(get_async_session),
):
    await order_service.add_line(
        db,
        order_id=order_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
        tax_rate=payload.tax_rate,
    )
    return _serialize_order(await order_service.get_order(db, order_id))


@router.delete("/{order_id}/lines/{line_id}", response_model=OrderRead)
async def remove_order_line(
    order_id: UUID,
    line_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    return _serialize_order(await order_service.remove_line(db, order_id=order_id, line_id=line_id))


@router.post("/{order_id}/fulfill", response_model=OrderRead)
async def fulfill_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Receive a purchase order (IN movements) or deliver a sales order (OUT movements).

    A second fulfill of the same order fails with 409 and emits nothing.
    """
    return _serialize_order(await order_service.fulfill(db, order_id))


@router.post("/{order_id}/cancel", response_model=OrderRead)
async def cancel_order(
    order_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    return _serialize_order(await order_service.cancel(db, order_id))
