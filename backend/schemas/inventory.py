from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator


MovementTypeName = Literal["IN", "OUT", "ADJUSTMENT"]


def _strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


def _upper_required(v: str) -> str:
    v = (v or "").strip().upper()
    if not v:
        raise ValueError("field is required")
    return v


class InventoryMovementCreate(BaseModel):
    product_id: UUID
    warehouse_id: UUID
    movement_type: MovementTypeName
    # Bounds depend on the movement type; the ledger checks them so they surface as 400
    quantity: int
    reason_code: str
    notes: Optional[str] = None

    @field_validator("movement_type", mode="before")
    @classmethod
    def _type_upper(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("reason_code")
    @classmethod
    def _reason(cls, v: str) -> str:
        return _upper_required(v)

    @field_validator("notes")
    @classmethod
    def _notes(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class BatchLineCreate(BaseModel):
    product_id: UUID
    warehouse_id: UUID
    quantity: int
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def _notes(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class InventoryBatchCreate(BaseModel):
    movement_type: MovementTypeName
    reason_code: str
    lines: List[BatchLineCreate]

    @field_validator("movement_type", mode="before")
    @classmethod
    def _type_upper(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("reason_code")
    @classmethod
    def _reason(cls, v: str) -> str:
        return _upper_required(v)


class InventoryTransferCreate(BaseModel):
    product_id: UUID
    from_warehouse_id: UUID
    to_warehouse_id: UUID
    quantity: int
    reason_code: str = "TRANSFER"
    notes: Optional[str] = None

    @field_validator("reason_code")
    @classmethod
    def _reason(cls, v: str) -> str:
        return _upper_required(v)

    @field_validator("notes")
    @classmethod
    def _notes(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class InventoryMovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: UUID
    warehouse_id: UUID
    movement_type: MovementTypeName
    quantity: int
    reason_code: str
    reference_table: Optional[str] = None
    reference_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime


class StockLevelOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    warehouse_id: UUID
    quantity: int
    reserved_quantity: int
    available: int
    updated_at: Optional[datetime] = None


class StockAfterMovement(BaseModel):
    product_id: UUID
    warehouse_id: UUID
    quantity: int
    reserved_quantity: int


class MovementResult(BaseModel):
    movement: InventoryMovementOut
    stock: StockAfterMovement


class StockSummaryOut(BaseModel):
    product_id: UUID
    sku: str
    name: str
    unit: str
    min_stock: int
    total_quantity: int
    reserved_quantity: int
    available: int
    stock_status: Literal["critical", "low", "normal", "high"]


class AvailabilityOut(BaseModel):
    product_id: UUID
    warehouse_id: UUID
    quantity: int
    reserved_quantity: int
    available: int


class KardexEntryOut(InventoryMovementOut):
    balance: int
    product_balance: int


class DriftOut(BaseModel):
    product_id: UUID
    warehouse_id: UUID
    field: Literal["quantity", "reserved_quantity"]
    expected: int
    actual: int
