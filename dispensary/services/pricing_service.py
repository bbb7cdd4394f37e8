"""
Pricing service - effective unit price resolution.

Priority, highest first:
    1. Price negotiated with the selected customer (flat, any quantity)
    2. Bulk tier with the highest min_qty that the quantity reaches
    3. Product base price (special_price when the product carries one)

Pure functions only: results depend on the arguments and nothing else,
so callers re-evaluate whenever any input changes.
"""
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from dispensary.exceptions import PricingConfigurationError
from dispensary.models import BulkPrice, Product


def validate_bulk_prices(product: Product) -> None:
    """
    Raise PricingConfigurationError if two tiers share a threshold
    or a threshold is below 1.
    """
    seen = set()
    for tier in product.bulk_prices:
        if tier.min_qty < 1:
            raise PricingConfigurationError(
                f'Bulk tier for "{product.name}" has min_qty {tier.min_qty} (must be >= 1)',
                payload={'product_id': product.id, 'min_qty': tier.min_qty},
            )
        if tier.min_qty in seen:
            raise PricingConfigurationError(
                f'Duplicate bulk tier min_qty {tier.min_qty} for "{product.name}"',
                payload={'product_id': product.id, 'min_qty': tier.min_qty},
            )
        seen.add(tier.min_qty)


def select_bulk_tier(bulk_prices: Sequence[BulkPrice], quantity: int) -> Optional[BulkPrice]:
    """Tier with the largest min_qty <= quantity, or None."""
    best = None
    for tier in bulk_prices:
        if quantity >= tier.min_qty and (best is None or tier.min_qty > best.min_qty):
            best = tier
    return best


def base_price(product: Product) -> Decimal:
    if product.special_price is not None:
        return product.special_price
    return product.price


def effective_price(
    product: Product,
    quantity: int,
    customer_id: Optional[str] = None,
    custom_prices: Optional[Mapping[str, Decimal]] = None,
) -> Decimal:
    """
    Return the unit price for `quantity` units of `product`.

    Args:
        product: Product snapshot
        quantity: Units on the line
        customer_id: Selected customer, if any
        custom_prices: That customer's negotiated prices by product id

    Raises:
        PricingConfigurationError: duplicate bulk thresholds
    """
    if customer_id is not None and custom_prices:
        negotiated = custom_prices.get(product.id)
        if negotiated is not None:
            return Decimal(str(negotiated))

    if product.bulk_prices:
        validate_bulk_prices(product)
        tier = select_bulk_tier(product.bulk_prices, quantity)
        if tier is not None:
            return tier.price

    return base_price(product)
