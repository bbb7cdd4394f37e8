"""Stock Location model."""
import uuid

from sqlalchemy import Column, String
from dispensary.database import Base


class StockLocation(Base):
    """Named logical location holding stock ('shop', 'facility')."""

    __tablename__ = 'stock_location'

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    name = Column(String(50), nullable=False, unique=True)

    def __repr__(self):
        return f"<StockLocation(id='{self.id}', name='{self.name}')>"
