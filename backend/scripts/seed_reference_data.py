"""
Seed movement reasons and demo warehouses.

Run locally:
  python backend/scripts/seed_reference_data.py

It uses the same DATABASE_* env vars as the backend (dotenv supported by core.config).
Existing codes are left untouched, so it is safe to run repeatedly.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import async_session_maker, create_db_and_tables, MovementReason, Warehouse


@dataclass(frozen=True)
class SeedReason:
    code: str
    applies_to: tuple
    description: Optional[str] = None


SEED_REASONS: list[SeedReason] = [
    SeedReason(code="PURCHASE", applies_to=("IN",), description="Received from a purchase order"),
    SeedReason(code="SALE", applies_to=("OUT",), description="Delivered on a sales order"),
    SeedReason(code="RETURN", applies_to=("IN",), description="Customer return"),
    SeedReason(code="WASTE", applies_to=("OUT",), description="Damaged, expired or lost"),
    SeedReason(code="TRANSFER", applies_to=("IN", "OUT"), description="Between warehouses"),
    SeedReason(code="ADJUSTMENT", applies_to=("IN", "OUT", "ADJUSTMENT"), description="Manual correction"),
    SeedReason(code="COUNT", applies_to=("ADJUSTMENT",), description="Physical count"),
]

SEED_WAREHOUSES: list[tuple[str, str]] = [
    ("MAIN", "Main warehouse"),
    ("STORE", "Store floor"),
]


async def seed_reasons(db: AsyncSession) -> int:
    res = await db.execute(select(MovementReason.code))
    existing = set(res.scalars().all())
    created = 0
    for r in SEED_REASONS:
        if r.code in existing:
            continue
        db.add(MovementReason(code=r.code, description=r.description, applies_to=",".join(r.applies_to)))
        created += 1
    return created


async def seed_warehouses(db: AsyncSession) -> int:
    res = await db.execute(select(Warehouse.code))
    existing = set(res.scalars().all())
    created = 0
    for code, name in SEED_WAREHOUSES:
        if code in existing:
            continue
        db.add(Warehouse(code=code, name=name))
        created += 1
    return created


async def main() -> None:
    await create_db_and_tables()
    async with async_session_maker() as db:
        reasons_n = await seed_reasons(db)
        warehouses_n = await seed_warehouses(db)
        await db.commit()
        print(f"Created reasons: {reasons_n}, warehouses: {warehouses_n}")


if __name__ == "__main__":
    asyncio.run(main())
