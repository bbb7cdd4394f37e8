"""
Checkout - hands the priced cart to the remote pay-order operation.

The remote operation is atomic: it re-checks and decrements stock, writes
the order and posts to the customer's ledger, or does nothing. It is the
authoritative half of the two-phase stock check (see cart_service).
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from dispensary.exceptions import (
    BusinessLogicError, InsufficientStockError, OutOfStockError, RemoteReadError
)
from dispensary.services.balance_service import invalidate_customer_balance
from dispensary.services.cache_service import CacheService
from dispensary.services.cart_service import CartService
from dispensary.services.settings_service import (
    StoreSettings, CENT, calculate_shipping, calculate_tax
)
from dispensary.utils.formatters import format_currency

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ('cash', 'card', 'credit', 'transfer')


@runtime_checkable
class PaymentBackend(Protocol):
    """Remote atomic order + payment operation."""

    async def pay_order(self, order: Mapping[str, Any]) -> Mapping[str, Any]:
        """
        Create and pay the order in one transaction.

        Returns at least {'order_id': ...}; may include 'order_number'.

        Raises:
            OutOfStockError / InsufficientStockError: stock check failed
            BusinessLogicError: order rejected
            RemoteReadError: operation could not be reached
        """
        ...


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    order_number: Optional[str]
    total: Decimal
    change_given: Decimal


def build_order(cart: CartService, settings: StoreSettings, payment_method: str = 'cash',
                cash_given: Optional[Decimal] = None, note: Optional[str] = None) -> Dict[str, Any]:
    """Order payload from the cart's current priced lines."""
    customers = cart.customers
    customer_id = customers.customer_id if customers else None
    is_pos_order = bool(customers and customers.is_pos_session)

    subtotal = cart.total.quantize(CENT)
    tax = calculate_tax(subtotal, settings)
    shipping_fee = calculate_shipping(subtotal, settings, is_pos_order)
    total = subtotal + tax + shipping_fee

    order = {
        'items': [
            {
                'product_id': line.product_id,
                'quantity': line.quantity,
                'price': line.unit_price,
            }
            for line in cart.lines
        ],
        'subtotal': subtotal,
        'tax': tax,
        'shipping_fee': shipping_fee,
        'total': total,
        'is_pos_order': is_pos_order,
        'customer_id': customer_id,
        'payment_method': payment_method,
        'note': note,
    }
    if payment_method == 'cash' and cash_given is not None:
        order['cash_given'] = cash_given
        order['change_given'] = max(Decimal('0.00'), cash_given - total)
    return order


async def checkout(cart: CartService, backend: PaymentBackend, settings: StoreSettings,
                   payment_method: str = 'cash', cash_given: Optional[Decimal] = None,
                   note: Optional[str] = None, cache: Optional[CacheService] = None) -> Optional[OrderResult]:
    """
    Pay for the cart.

    On success the cart is cleared and the customer's cached balance is
    invalidated. Every expected failure is reported through the cart's
    notification queue, leaves the cart untouched and returns None.
    """
    notifications = cart.notifications

    if cart.is_empty:
        notifications.warning('Your cart is empty')
        return None
    if payment_method not in PAYMENT_METHODS:
        raise ValueError(f'Unknown payment method: {payment_method}')

    order = build_order(cart, settings, payment_method, cash_given, note)
    if cash_given is not None and payment_method == 'cash' and cash_given < order['total']:
        notifications.warning('Cash given is less than the order total')
        return None
    if not order['is_pos_order'] and order['subtotal'] < settings.min_order_amount:
        notifications.warning(f"Minimum order amount is {format_currency(settings.min_order_amount, settings.currency)}")
        return None

    try:
        result = await backend.pay_order(order)
    except (OutOfStockError, InsufficientStockError) as e:
        logger.info(f"[CHECKOUT] Rejected by stock check: {e.message}")
        notifications.error(e.message)
        return None
    except RemoteReadError as e:
        logger.warning(f"[CHECKOUT] Pay-order unreachable: {e}")
        notifications.error('Payment could not be processed. Please try again.')
        return None
    except BusinessLogicError as e:
        logger.info(f"[CHECKOUT] Rejected: {e.message}")
        notifications.error(e.message)
        return None

    order_id = str(result['order_id'])
    order_number = result.get('order_number')
    logger.info(f"[CHECKOUT] Order {order_id} paid: total={order['total']} method={payment_method}")

    cart.clear_cart()
    if cache is not None and order['customer_id'] is not None:
        invalidate_customer_balance(cache, order['customer_id'])
    notifications.success(f"Order {order_number or order_id} placed")

    return OrderResult(
        order_id=order_id,
        order_number=order_number,
        total=order['total'],
        change_given=order.get('change_given', Decimal('0.00')),
    )
