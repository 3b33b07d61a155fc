"""
Domain errors raised by the stock ledger services.

Every error aborts the whole operation: the caller's transaction is rolled back
and nothing is persisted. `main.py` maps each class to an HTTP response.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional
from uuid import UUID


class StockLedgerError(Exception):
    code = "stock_ledger_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(StockLedgerError):
    """Malformed input: bad movement type, non-positive quantity, unknown reference, bad transition."""

    code = "validation_error"
    status_code = 400


class NotFoundError(ValidationError):
    code = "not_found"
    status_code = 404


class InsufficientStockError(StockLedgerError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(
        self,
        available: int,
        requested: int,
        product_id: Optional[UUID] = None,
        warehouse_id: Optional[UUID] = None,
    ):
        super().__init__(f"Not enough stock. Available={int(available)} requested={int(requested)}")
        self.available = int(available)
        self.requested = int(requested)
        self.product_id = product_id
        self.warehouse_id = warehouse_id

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out.update(
            {
                "available": self.available,
                "requested": self.requested,
                "product_id": str(self.product_id) if self.product_id else None,
                "warehouse_id": str(self.warehouse_id) if self.warehouse_id else None,
            }
        )
        return out


class ConcurrentModificationError(StockLedgerError):
    code = "concurrent_modification"
    status_code = 409

    def __init__(self, message: str = "order already processed"):
        super().__init__(message)


@dataclass(frozen=True)
class LineFailure:
    index: int
    field: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BatchValidationError(StockLedgerError):
    code = "batch_validation_error"
    status_code = 422

    def __init__(self, failures: List[LineFailure]):
        super().__init__(f"Batch rejected: {len(failures)} invalid line(s)")
        self.failures = list(failures)

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["failures"] = [f.to_dict() for f in self.failures]
        return out
