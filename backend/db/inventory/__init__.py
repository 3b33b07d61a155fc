"""
Stock ledger tables.

Models:
- MovementReason (reference data: which movement types a reason code applies to)
- InventoryMovement (append-only ledger; quantity is always positive, the type decides the effect)
- StockLevel (current quantity and reserved quantity per product per warehouse)
"""
