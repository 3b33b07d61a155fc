from sqlalchemy import Column, String, Text

from ..database import Base


class MovementReason(Base):
    __tablename__ = "movement_reasons"

    code = Column(String, primary_key=True)  # PURCHASE | SALE | TRANSFER | ADJUSTMENT | ...
    description = Column(Text, nullable=True)
    # Comma-separated movement types, e.g. "IN,OUT"
    applies_to = Column(Text, nullable=False)

    @property
    def movement_types(self) -> list:
        return [t.strip().upper() for t in (self.applies_to or "").split(",") if t.strip()]

    def applies(self, movement_type: str) -> bool:
        return str(movement_type).upper() in self.movement_types

    @property
    def to_schema(self):
        return {
            "code": self.code,
            "description": self.description,
            "applies_to": self.movement_types,
        }
