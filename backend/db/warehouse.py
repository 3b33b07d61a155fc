import uuid

from sqlalchemy import Boolean, Column, String, Uuid

from .database import Base


class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": bool(self.is_active),
        }
