"""Stock Movement model."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Text, Enum, ForeignKey
from sqlalchemy.sql import func
from dispensary.database import Base
import enum


class StockMovementType(enum.Enum):
    """Stock movement type enum."""
    PRODUCTION = "production"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"
    SALE = "sale"


class StockMovementStatus(enum.Enum):
    """Stock movement status enum."""
    PENDING = "pending"
    DONE = "done"
    REJECTED = "rejected"


class StockMovement(Base):
    """Audit record of a stock change between locations."""

    __tablename__ = 'stock_movement'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    product_id = Column(String(64), nullable=False)
    from_location_id = Column(String(64), ForeignKey('stock_location.id'), nullable=True)
    to_location_id = Column(String(64), ForeignKey('stock_location.id'), nullable=True)
    quantity = Column(Integer, nullable=False)
    type = Column(Enum(StockMovementType, name='stock_movement_type'), nullable=False)
    status = Column(Enum(StockMovementStatus, name='stock_movement_status'), nullable=False,
                    default=StockMovementStatus.DONE)
    note = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<StockMovement(id={self.id}, type={self.type.value}, product_id='{self.product_id}', quantity={self.quantity})>"
