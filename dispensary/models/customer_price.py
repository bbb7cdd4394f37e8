"""Customer Price model."""
from sqlalchemy import Column, String, Numeric
from dispensary.database import Base


class CustomerPrice(Base):
    """Unit price negotiated with one customer for one product."""

    __tablename__ = 'customer_price'

    customer_id = Column(String(64), primary_key=True)
    product_id = Column(String(64), primary_key=True)
    price = Column(Numeric(10, 2), nullable=False)

    def __repr__(self):
        return f"<CustomerPrice(customer_id='{self.customer_id}', product_id='{self.product_id}', price={self.price})>"
