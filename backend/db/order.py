import uuid
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import relationship
from .database import Base, utcnow


class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    kind = Column(String, nullable=False, index=True)  # PURCHASE|SALES
    status = Column(String, nullable=False, default="OPEN", index=True)  # OPEN|RECEIVED|COMPLETED|CANCELLED
    warehouse_id = Column(Uuid, ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True)
    currency = Column(String(3), nullable=False, default="MXN")
    # Supplier (PURCHASE) or customer (SALES) name or code; free text, optional
    counterparty = Column(String, nullable=True, index=True)

    # Always recomputed from all lines
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    fulfilled_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    warehouse = relationship("Warehouse")
    lines = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
    )


class OrderLine(Base):
    __tablename__ = "order_lines"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(6, 4), nullable=False, default=0)

    # Computed: tax = qty * unit_price * tax_rate, line_total = qty * unit_price + tax
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False, default=0)

    order = relationship("Order", back_populates="lines")
    product = relationship("Product")
