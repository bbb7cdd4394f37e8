"""Product snapshot model."""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple


def _to_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class BulkPrice:
    """One tier of a volume price schedule."""

    min_qty: int
    price: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {'min_qty': self.min_qty, 'price': str(self.price)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BulkPrice':
        return cls(min_qty=int(data['min_qty']), price=_to_decimal(data['price']))


@dataclass(frozen=True)
class Product:
    """
    Product as seen by the cart.

    Owned by the catalog; the cart only keeps an immutable snapshot.
    `quantity` is the quantity the shopper asked for on the product page,
    not the stock level.
    """

    id: str
    name: str
    price: Decimal
    category: Optional[str] = None
    is_special: bool = False
    is_new: bool = False
    is_out_of_stock: bool = False
    special_price: Optional[Decimal] = None
    bulk_prices: Tuple[BulkPrice, ...] = field(default_factory=tuple)
    quantity: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'price', _to_decimal(self.price))
        if self.special_price is not None:
            object.__setattr__(self, 'special_price', _to_decimal(self.special_price))
        object.__setattr__(self, 'bulk_prices', tuple(
            tier if isinstance(tier, BulkPrice) else BulkPrice.from_dict(tier)
            for tier in self.bulk_prices
        ))

    def __repr__(self):
        return f"<Product(id='{self.id}', name='{self.name}', price={self.price})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'price': str(self.price),
            'category': self.category,
            'is_special': self.is_special,
            'is_new': self.is_new,
            'is_out_of_stock': self.is_out_of_stock,
            'special_price': str(self.special_price) if self.special_price is not None else None,
            'bulk_prices': [tier.to_dict() for tier in self.bulk_prices],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Product':
        return cls(
            id=str(data['id']),
            name=data['name'],
            price=data['price'],
            category=data.get('category'),
            is_special=bool(data.get('is_special', False)),
            is_new=bool(data.get('is_new', False)),
            is_out_of_stock=bool(data.get('is_out_of_stock', False)),
            special_price=data.get('special_price'),
            bulk_prices=tuple(data.get('bulk_prices') or ()),
        )
