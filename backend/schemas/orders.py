from pydantic import BaseModel, field_validator
from typing import List, Literal, Optional
from uuid import UUID
from datetime import datetime
from decimal import Decimal


OrderKindName = Literal["PURCHASE", "SALES"]
OrderStatusName = Literal["OPEN", "RECEIVED", "COMPLETED", "CANCELLED"]


class OrderLineRead(BaseModel):
    id: UUID
    product_id: UUID
    product_sku: Optional[str] = None
    product_name: Optional[str] = None
    position: int
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    tax: Decimal
    line_total: Decimal


class OrderRead(BaseModel):
    id: UUID
    kind: OrderKindName
    status: OrderStatusName
    warehouse_id: UUID
    currency: str
    counterparty: Optional[str] = None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    notes: Optional[str] = None
    created_at: datetime
    fulfilled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    lines: List[OrderLineRead]


class OrderCreate(BaseModel):
    kind: OrderKindName
    warehouse_id: UUID
    currency: Optional[str] = None
    counterparty: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def _kind_upper(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().upper()
        if not v:
            return None
        if len(v) != 3:
            raise ValueError("currency must be a 3-letter code (e.g. MXN)")
        return v


class OrderLineCreate(BaseModel):
    product_id: UUID
    quantity: int
    unit_price: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
