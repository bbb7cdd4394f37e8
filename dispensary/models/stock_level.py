"""Stock Level model."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dispensary.database import Base


class StockLevel(Base):
    """Quantity on hand for one (product, location) pair."""

    __tablename__ = 'stock_level'

    product_id = Column(String(64), primary_key=True)
    location_id = Column(String(64), ForeignKey('stock_location.id'), primary_key=True)
    quantity = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationship
    location = relationship('StockLocation')

    def __repr__(self):
        return f"<StockLevel(product_id='{self.product_id}', location_id={self.location_id}, quantity={self.quantity})>"
