"""
Cart service - in-memory cart with optimistic stock validation.

Stock is checked in two phases:
    1. Here, optimistically, before each mutation (UX feedback only)
    2. Remotely and atomically by the pay-order operation at checkout

Phase 1 is check-then-act across a suspension point. The stock read
happens first; the line list is read and mutated afterwards in one
synchronous step, so interleaved operations on the same product never
lose each other's quantity. What can go stale is the stock figure itself:
if stock drops while a check is in flight, a line may end up above the
new level by at most that drop. Phase 2 catches it.

Every mutation is persisted to durable storage and announced to
subscribers. total and item_count are recomputed from the lines on every
access.
"""
import asyncio
import enum
import logging
from dataclasses import replace
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional

from dispensary.exceptions import RemoteReadError
from dispensary.models import CartLine, Product
from dispensary.services.customer_service import CustomerContext
from dispensary.services.notification_service import NotificationQueue
from dispensary.services.pricing_service import effective_price
from dispensary.services.stock_service import StockService
from dispensary.services.storage_service import DurableStorage, load_json, dump_json

logger = logging.getLogger(__name__)

Listener = Callable[['CartService'], None]

RETRY_MESSAGE = 'Could not check stock right now. Please try again.'


class OverLimitPolicy(enum.Enum):
    """What add_item does when the requested total exceeds the ceiling."""
    CLAMP = "clamp"    # set the line to the ceiling and warn
    REJECT = "reject"  # leave the line untouched and warn


class CartService:
    """
    Shopping cart for one application session.

    Usage:
        cart = CartService(stock, customers, notifications, storage)
        cart.load()
        await cart.add_item(product, 2)
        cart.total, cart.item_count
    """

    def __init__(
        self,
        stock: StockService,
        customers: Optional[CustomerContext],
        notifications: NotificationQueue,
        storage: DurableStorage,
        location_name: str = 'shop',
        max_line_qty: int = 99,
        storage_key: str = 'cart',
        over_limit_policy: OverLimitPolicy = OverLimitPolicy.CLAMP,
    ):
        self.stock = stock
        self.customers = customers
        self.notifications = notifications
        self.storage = storage
        self.location_name = location_name
        self.max_line_qty = max_line_qty
        self.storage_key = storage_key
        self.over_limit_policy = over_limit_policy
        self._lines: Dict[str, CartLine] = {}
        self._listeners: List[Listener] = []
        self._unsubscribe_pricing: Optional[Callable[[], None]] = None
        self.attach()

    @classmethod
    def from_config(cls, config: Mapping[str, Any], stock: StockService, customers: Optional[CustomerContext],
                    notifications: NotificationQueue, storage: DurableStorage) -> 'CartService':
        return cls(
            stock,
            customers,
            notifications,
            storage,
            location_name=config.get('SHOP_LOCATION_NAME', 'shop'),
            max_line_qty=int(config.get('CART_MAX_LINE_QTY', 99)),
            storage_key=config.get('CART_STORAGE_KEY', 'cart'),
            over_limit_policy=OverLimitPolicy(config.get('CART_OVER_LIMIT_POLICY', 'clamp')),
        )

    # ======================================================================
    # Derived state
    # ======================================================================

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self._lines.values()), Decimal('0'))

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get_line(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def attach(self) -> None:
        """Reprice whenever the customer context changes. Idempotent."""
        if self.customers is not None and self._unsubscribe_pricing is None:
            self._unsubscribe_pricing = self.customers.subscribe(self._on_pricing_changed)

    def close(self) -> None:
        """Detach from the customer context."""
        if self._unsubscribe_pricing is not None:
            self._unsubscribe_pricing()
            self._unsubscribe_pricing = None

    # ======================================================================
    # Mutations
    # ======================================================================

    async def add_item(self, product: Product, quantity: Optional[int] = None,
                       cancel: Optional[asyncio.Event] = None) -> bool:
        """
        Add units of a product, merging into an existing line.

        Args:
            product: Product snapshot from the catalog
            quantity: Units to add (defaults to product.quantity, then 1)
            cancel: Set it to discard the operation while the stock check runs

        Returns:
            True if the line was created or grew. A quantity below 1 is
            ignored and returns False without reading stock.
        """
        requested = int(quantity if quantity is not None else (product.quantity or 1))
        if requested < 1:
            logger.debug(f"[CART] add_item({product.id}) ignored, quantity {requested}")
            return False

        if product.is_out_of_stock:
            self.notifications.error(f'{product.name} is out of stock')
            return False

        stock = await self._check_stock(product.id)
        if cancel is not None and cancel.is_set():
            logger.debug(f"[CART] add_item({product.id}) cancelled")
            return False
        if stock is None:
            self.notifications.error(RETRY_MESSAGE)
            return False
        if stock <= 0:
            self.notifications.error(f'{product.name} is out of stock')
            return False

        # Read the line only now: another add may have landed while we waited.
        existing = self._lines.get(product.id)
        current = existing.quantity if existing else 0
        candidate = current + requested
        ceiling = min(self.max_line_qty, stock)
        new_quantity = candidate

        if candidate > ceiling:
            self.notifications.warning(self._limit_message(product, stock))
            if self.over_limit_policy is OverLimitPolicy.REJECT:
                return False
            new_quantity = ceiling
            logger.info(f"[CART] Clamped {product.id} from {candidate} to {ceiling} (stock={stock})")

        if new_quantity <= current:
            return False

        snapshot = replace(product, quantity=None)
        self._put_line(CartLine(snapshot, new_quantity, self._price(snapshot, new_quantity)))
        self.notifications.success(f'Added {product.name} to cart')
        return True

    async def update_quantity(self, product_id: str, quantity: int,
                              cancel: Optional[asyncio.Event] = None) -> bool:
        """
        Set a line's quantity, clamped to stock and the per-line maximum.

        A quantity below 1 removes the line. A line whose product has no
        stock left is removed.

        Returns:
            True if the line now holds the requested quantity or was
            removed on request.
        """
        if product_id not in self._lines:
            return False
        if quantity < 1:
            self.remove_item(product_id)
            return True

        stock = await self._check_stock(product_id)
        if cancel is not None and cancel.is_set():
            logger.debug(f"[CART] update_quantity({product_id}) cancelled")
            return False

        line = self._lines.get(product_id)
        if line is None:
            return False
        if stock is None:
            self.remove_item(product_id)
            self.notifications.error(RETRY_MESSAGE)
            return False
        if stock <= 0:
            self.remove_item(product_id)
            self.notifications.error(f'{line.product.name} is out of stock and was removed from your cart')
            return False

        ceiling = min(self.max_line_qty, stock)
        new_quantity = quantity
        if quantity > ceiling:
            self.notifications.warning(self._limit_message(line.product, stock))
            new_quantity = ceiling

        self._put_line(line.with_quantity(new_quantity, self._price(line.product, new_quantity)))
        return new_quantity == quantity

    def remove_item(self, product_id: str) -> bool:
        """Drop a line. Idempotent; returns whether a line was removed."""
        if product_id not in self._lines:
            return False
        lines = dict(self._lines)
        del lines[product_id]
        self._commit(lines)
        return True

    def clear_cart(self) -> None:
        self._lines = {}
        self.storage.remove(self.storage_key)
        logger.info("[CART] Cleared")
        self._emit()

    def reprice(self) -> bool:
        """
        Recompute every unit price at the line's current quantity.

        Quantities never change here. Returns whether any price changed.
        """
        lines = {}
        changed = False
        for pid, line in self._lines.items():
            price = self._price(line.product, line.quantity)
            if price != line.unit_price:
                line = line.with_price(price)
                changed = True
            lines[pid] = line
        if changed:
            self._commit(lines)
            logger.debug(f"[CART] Repriced {len(lines)} lines")
        return changed

    # ======================================================================
    # Persistence
    # ======================================================================

    def load(self) -> int:
        """
        Rehydrate lines from durable storage; returns the number loaded.

        A corrupt payload is dropped and the cart starts empty.
        """
        data = load_json(self.storage, self.storage_key)
        if data is None:
            return 0
        try:
            loaded = [CartLine.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError, ArithmeticError, AttributeError) as e:
            logger.warning(f"[CART] Dropping corrupt persisted cart: {e}")
            self.storage.remove(self.storage_key)
            return 0

        lines = {}
        normalised = 0
        for line in loaded:
            if line.quantity < 1:
                normalised += 1
                continue
            if line.quantity > self.max_line_qty:
                line = line.with_quantity(self.max_line_qty, self._price(line.product, self.max_line_qty))
                normalised += 1
            lines[line.product_id] = line
        self._lines = lines
        if normalised:
            logger.info(f"[CART] Normalised {normalised} persisted lines")
            self.save()
        self._emit()
        return len(lines)

    def save(self) -> bool:
        return dump_json(self.storage, self.storage_key, [line.to_dict() for line in self._lines.values()])

    # ======================================================================
    # Internals
    # ======================================================================

    async def _check_stock(self, product_id: str) -> Optional[int]:
        """Shop stock, or None when the read failed (treated as zero by callers)."""
        try:
            return await self.stock.read_stock(product_id, self.location_name)
        except RemoteReadError as e:
            logger.warning(f"[CART] Stock check failed for {product_id}: {e}")
            return None

    def _price(self, product: Product, quantity: int) -> Decimal:
        if self.customers is None:
            return effective_price(product, quantity)
        return effective_price(product, quantity, self.customers.customer_id, self.customers.custom_prices)

    def _limit_message(self, product: Product, stock: int) -> str:
        if stock <= self.max_line_qty:
            return f'Only {stock} of {product.name} available'
        return f'Maximum {self.max_line_qty} of {product.name} per order'

    def _put_line(self, line: CartLine) -> None:
        lines = dict(self._lines)
        lines[line.product_id] = line
        self._commit(lines)

    def _commit(self, lines: Dict[str, CartLine]) -> None:
        self._lines = lines
        self.save()
        self._emit()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("[CART] Listener failed")

    def _on_pricing_changed(self, _context: CustomerContext) -> None:
        self.reprice()
