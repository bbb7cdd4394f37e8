"""Cart line model."""
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict

from dispensary.models.product import Product


@dataclass(frozen=True)
class CartLine:
    """A product snapshot with its cart quantity and resolved unit price."""

    product: Product
    quantity: int
    unit_price: Decimal

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def with_quantity(self, quantity: int, unit_price: Decimal) -> 'CartLine':
        return replace(self, quantity=quantity, unit_price=unit_price)

    def with_price(self, unit_price: Decimal) -> 'CartLine':
        return replace(self, unit_price=unit_price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product': self.product.to_dict(),
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartLine':
        return cls(
            product=Product.from_dict(data['product']),
            quantity=int(data['quantity']),
            unit_price=Decimal(str(data['unit_price'])),
        )

    def __repr__(self):
        return f"<CartLine(product_id='{self.product_id}', quantity={self.quantity}, unit_price={self.unit_price})>"
