"""
Replay the movement ledger and report stock levels that drifted from it.

Run locally:
  python backend/scripts/reconcile_stock.py

Exits with status 1 when any drift is found. Nothing is repaired.
"""

from __future__ import annotations

import asyncio
import sys

from core.logging import configure_logging
from db.database import async_session_maker
from services.reconcile import find_drift


async def main() -> int:
    configure_logging()
    async with async_session_maker() as db:
        drift = await find_drift(db)

    if not drift:
        print("No drift: stock levels match the ledger.")
        return 0

    for d in drift:
        print(f"{d.product_id} @ {d.warehouse_id}: {d.field} expected={d.expected} actual={d.actual}")
    print(f"Drifted pairs: {len(drift)}")
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
