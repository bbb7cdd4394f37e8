"""Stock Discrepancy model."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dispensary.database import Base


class StockDiscrepancy(Base):
    """Shortfall reported when a transfer arrives with fewer units than sent."""

    __tablename__ = 'stock_discrepancy'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    movement_id = Column(BigInteger().with_variant(Integer, 'sqlite'), ForeignKey('stock_movement.id'),
                         nullable=False)
    product_id = Column(String(64), nullable=False)
    expected_quantity = Column(Integer, nullable=False)
    actual_quantity = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    reported_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationship
    movement = relationship('StockMovement')

    def __repr__(self):
        return (f"<StockDiscrepancy(movement_id={self.movement_id}, product_id='{self.product_id}', "
                f"expected={self.expected_quantity}, actual={self.actual_quantity})>")
