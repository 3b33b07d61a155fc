from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import get_async_session
from schemas.inventory import (
    AvailabilityOut,
    DriftOut,
    InventoryBatchCreate,
    InventoryMovementCreate,
    InventoryMovementOut,
    InventoryTransferCreate,
    KardexEntryOut,
    MovementResult,
    StockLevelOut,
    StockSummaryOut,
)
from services import movements as movement_service
from services.availability import compute_available
from services.batch import BatchLine
from services.kardex import reconstruct
from services.ledger import list_movements as ledger_list_movements
from services.reconcile import find_drift
from services.stock import get_stock_level, list_stock, stock_summary

router = APIRouter()


@router.post("/movements", response_model=MovementResult, status_code=status.HTTP_201_CREATED)
async def create_movement(
    payload: InventoryMovementCreate,
    db: AsyncSession = Depends(get_async_session),
):
    return await movement_service.submit_movement(
        db,
        product_id=payload.product_id,
        warehouse_id=payload.warehouse_id,
        movement_type=payload.movement_type,
        quantity=payload.quantity,
        reason_code=payload.reason_code,
        notes=payload.notes,
    )


@router.post("/movements/batch", response_model=List[MovementResult], status_code=status.HTTP_201_CREATED)
async def create_movement_batch(
    payload: InventoryBatchCreate,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Submit several lines sharing one movement type and reason.

    - Duplicate product/warehouse pairs and non-positive quantities reject the whole batch.
    - OUT batches are checked per product/warehouse against availability.
    - Either every line is persisted or none is.
    """
    lines = [
        BatchLine(
            product_id=ln.product_id,
            warehouse_id=ln.warehouse_id,
            quantity=ln.quantity,
            notes=ln.notes,
        )
        for ln in payload.lines
    ]
    return await movement_service.submit_batch(
        db,
        movement_type=payload.movement_type,
        reason_code=payload.reason_code,
        lines=lines,
    )


@router.get("/movements", response_model=List[InventoryMovementOut])
async def list_movements(
    product_id: Optional[UUID] = None,
    warehouse_id: Optional[UUID] = None,
    movement_type: Optional[str] = Query(None, pattern="^(IN|OUT|ADJUSTMENT)$"),
    reference_table: Optional[str] = None,
    reference_id: Optional[UUID] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_async_session),
):
    rows = await ledger_list_movements(
        db,
        product_id=product_id,
        warehouse_id=warehouse_id,
        movement_type=movement_type,
        reference_table=reference_table,
        reference_id=reference_id,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
    )
    return [InventoryMovementOut(**mv.to_schema) for mv in rows]


@router.post("/transfers", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    payload: InventoryTransferCreate,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Transfer stock between two warehouses.

    - Creates two movement rows (OUT at the source, IN at the destination) or none.
    - Requires enough available quantity at the source.
    """
    return await movement_service.transfer(
        db,
        product_id=payload.product_id,
        from_warehouse_id=payload.from_warehouse_id,
        to_warehouse_id=payload.to_warehouse_id,
        quantity=payload.quantity,
        reason_code=payload.reason_code,
        notes=payload.notes,
    )


@router.get("/stock", response_model=List[StockLevelOut])
async def get_stock(
    warehouse_id: Optional[UUID] = None,
    product_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
):
    rows = await list_stock(db, warehouse_id=warehouse_id, product_id=product_id)
    return [StockLevelOut(**s.to_schema) for s in rows]


@router.get("/stock/summary", response_model=List[StockSummaryOut])
async def get_stock_summary(
    warehouse_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
):
    return await stock_summary(db, warehouse_id=warehouse_id)


@router.get("/availability", response_model=AvailabilityOut)
async def get_availability(
    product_id: UUID,
    warehouse_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    stock = await get_stock_level(db, product_id, warehouse_id)
    return AvailabilityOut(
        product_id=product_id,
        warehouse_id=warehouse_id,
        quantity=int(stock.quantity) if stock else 0,
        reserved_quantity=int(stock.reserved_quantity) if stock else 0,
        available=await compute_available(db, product_id, warehouse_id),
    )


@router.get("/kardex/{product_id}", response_model=List[KardexEntryOut])
async def get_kardex(
    product_id: UUID,
    warehouse_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_async_session),
):
    return [KardexEntryOut(**entry.to_schema) async for entry in reconstruct(db, product_id, warehouse_id)]


@router.get("/reconciliation", response_model=List[DriftOut])
async def get_reconciliation(db: AsyncSession = Depends(get_async_session)):
    return [DriftOut(**d.to_schema) for d in await find_drift(db)]
