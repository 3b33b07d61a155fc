import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, Uuid

from .database import Base, utcnow


class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sku = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    unit = Column(Text, nullable=False, default="pz")
    # Threshold used by the stock summary classification (critical/low/normal/high)
    min_stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "min_stock": int(self.min_stock or 0),
            "is_active": bool(self.is_active),
        }
