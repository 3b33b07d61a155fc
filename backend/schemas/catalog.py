from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


class ProductCreate(BaseModel):
    sku: str
    name: str
    unit: str = "pz"
    min_stock: int = 0

    @field_validator("sku", "name", "unit")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("min_stock")
    @classmethod
    def _min_stock(cls, v: int) -> int:
        if v < 0:
            raise ValueError("min_stock must be >= 0")
        return v


class ProductRead(BaseModel):
    id: UUID
    sku: str
    name: str
    unit: str
    min_stock: int
    is_active: bool


class WarehouseCreate(BaseModel):
    code: str
    name: str

    @field_validator("code")
    @classmethod
    def _code(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class WarehouseRead(BaseModel):
    id: UUID
    code: str
    name: str
    is_active: bool


class MovementReasonCreate(BaseModel):
    code: str
    description: Optional[str] = None
    applies_to: List[Literal["IN", "OUT", "ADJUSTMENT"]]

    @field_validator("code")
    @classmethod
    def _code(cls, v: str) -> str:
        v = (v or "").strip().upper()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("applies_to", mode="before")
    @classmethod
    def _types_upper(cls, v):
        if isinstance(v, list):
            return [x.strip().upper() if isinstance(x, str) else x for x in v]
        return v

    @field_validator("applies_to")
    @classmethod
    def _types_nonempty(cls, v):
        if not v:
            raise ValueError("applies_to must name at least one movement type")
        return list(dict.fromkeys(v))


class MovementReasonRead(BaseModel):
    code: str
    description: Optional[str] = None
    applies_to: List[str]
