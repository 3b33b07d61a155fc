from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from db.database import (
    get_async_session,
    MovementReason as MovementReasonModel,
    Product as ProductModel,
    Warehouse as WarehouseModel,
)
from schemas.catalog import (
    MovementReasonCreate,
    MovementReasonRead,
    ProductCreate,
    ProductRead,
    WarehouseCreate,
    WarehouseRead,
)

router = APIRouter()


@router.get("/products", response_model=List[ProductRead])
async def list_products(
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_async_session),
):
    stmt = select(ProductModel).order_by(ProductModel.sku.asc())
    if not include_inactive:
        stmt = stmt.where(ProductModel.is_active.is_(True))
    res = await db.execute(stmt)
    return [ProductRead(**p.to_schema) for p in res.scalars().all()]


@router.post("/products", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
async def create_product(
    payload: ProductCreate,
    db: AsyncSession = Depends(get_async_session),
):
    existing = await db.execute(select(ProductModel).where(ProductModel.sku == payload.sku))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Product SKU already exists")

    m = ProductModel(sku=payload.sku, name=payload.name, unit=payload.unit, min_stock=payload.min_stock)
    db.add(m)
    await db.commit()
    return ProductRead(**m.to_schema)


@router.get("/warehouses", response_model=List[WarehouseRead])
async def list_warehouses(db: AsyncSession = Depends(get_async_session)):
    res = await db.execute(select(WarehouseModel).order_by(WarehouseModel.code.asc()))
    return [WarehouseRead(**w.to_schema) for w in res.scalars().all()]


@router.post("/warehouses", response_model=WarehouseRead, status_code=status.HTTP_201_CREATED)
async def create_warehouse(
    payload: WarehouseCreate,
    db: AsyncSession = Depends(get_async_session),
):
    existing = await db.execute(select(WarehouseModel).where(WarehouseModel.code == payload.code))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Warehouse code already exists")

    m = WarehouseModel(code=payload.code, name=payload.name)
    db.add(m)
    await db.commit()
    return WarehouseRead(**m.to_schema)


@router.get("/reasons", response_model=List[MovementReasonRead])
async def list_reasons(db: AsyncSession = Depends(get_async_session)):
    res = await db.execute(select(MovementReasonModel).order_by(MovementReasonModel.code.asc()))
    return [MovementReasonRead(**r.to_schema) for r in res.scalars().all()]


@router.post("/reasons", response_model=MovementReasonRead, status_code=status.HTTP_201_CREATED)
async def create_reason(
    payload: MovementReasonCreate,
    db: AsyncSession = Depends(get_async_session),
):
    if await db.get(MovementReasonModel, payload.code):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Reason code already exists")

    m = MovementReasonModel(
        code=payload.code,
        description=(payload.description or "").strip() or None,
        applies_to=",".join(payload.applies_to),
    )
    db.add(m)
    await db.commit()
    return MovementReasonRead(**m.to_schema)
