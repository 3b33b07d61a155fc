from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"
    __table_args__ = (
        # ADJUSTMENT records a counted balance, which may be zero.
        CheckConstraint(
            "quantity > 0 OR (movement_type = 'ADJUSTMENT' AND quantity = 0)",
            name="ck_inventory_movements_quantity",
        ),
        CheckConstraint(
            "movement_type IN ('IN', 'OUT', 'ADJUSTMENT')",
            name="ck_inventory_movements_type",
        ),
    )

    # Ledger order key. SQLite only autoincrements a plain INTEGER primary key.
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    product_id = Column(
        Uuid,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    warehouse_id = Column(
        Uuid,
        ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    movement_type = Column(String, nullable=False, index=True)  # 'IN' | 'OUT' | 'ADJUSTMENT'
    quantity = Column(Integer, nullable=False)
    reason_code = Column(String, ForeignKey("movement_reasons.code"), nullable=False)

    # 'PURCHASE' | 'SALES' (order kind) or 'TRANSFER'
    reference_table = Column(String, nullable=True, index=True)
    reference_id = Column(Uuid, nullable=True, index=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    product = relationship("Product")
    warehouse = relationship("Warehouse")

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "movement_type": self.movement_type,
            "quantity": int(self.quantity),
            "reason_code": self.reason_code,
            "reference_table": self.reference_table,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "created_at": self.created_at,
        }
