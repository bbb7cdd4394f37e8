"""
Customer context - the POS-selected customer and their negotiated prices.

Selecting a customer marks the session as a POS session and switches
pricing to that customer's negotiated prices. Listeners (the cart) are
notified after every change so they can reprice.
"""
import logging
from decimal import Decimal
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from dispensary.database import run_in_session
from dispensary.exceptions import RemoteReadError
from dispensary.models import CustomerPrice, Customer
from dispensary.services.cache_service import CacheService, PROFILE
from dispensary.services.notification_service import NotificationQueue
from dispensary.services.storage_service import DurableStorage, load_json, dump_json

logger = logging.getLogger(__name__)

Listener = Callable[['CustomerContext'], None]

_EMPTY: Mapping[str, Decimal] = MappingProxyType({})


@runtime_checkable
class CustomPriceBackend(Protocol):
    """Interface for negotiated price lookups."""

    async def fetch_custom_prices(self, customer_id: str) -> Mapping[str, Decimal]:
        """Return {product_id: unit_price} for the customer."""
        ...


class CustomerContext:
    """
    Selected-customer state for one application session.

    Usage:
        context = CustomerContext(SqlCustomPriceBackend(get_session), storage, notifications)
        await context.restore()
        await context.select_customer(customer)
    """

    def __init__(
        self,
        price_backend: CustomPriceBackend,
        storage: DurableStorage,
        notifications: Optional[NotificationQueue] = None,
        storage_key: str = 'selectedCustomer',
    ):
        self.price_backend = price_backend
        self.storage = storage
        self.notifications = notifications
        self.storage_key = storage_key
        self._customer: Optional[Customer] = None
        self._custom_prices: Mapping[str, Decimal] = _EMPTY
        self._listeners: List[Listener] = []
        # Bumped on every selection so a slow price fetch cannot
        # overwrite a newer selection.
        self._generation = 0

    @property
    def customer(self) -> Optional[Customer]:
        return self._customer

    @property
    def customer_id(self) -> Optional[str]:
        return self._customer.id if self._customer else None

    @property
    def custom_prices(self) -> Mapping[str, Decimal]:
        return self._custom_prices

    @property
    def is_pos_session(self) -> bool:
        return self._customer is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    async def select_customer(self, customer: Customer) -> bool:
        """
        Select a customer and load their negotiated prices.

        Returns False when prices could not be loaded; the customer stays
        selected with an empty price map. Returns False without any change
        if a newer selection happened while prices were loading.
        """
        self._generation += 1
        generation = self._generation
        prices, ok = await self._load_prices(customer.id)
        if generation != self._generation:
            logger.debug(f"[PRICING] Discarding stale price load for customer {customer.id}")
            return False

        self._customer = customer
        self._custom_prices = prices
        dump_json(self.storage, self.storage_key, customer.to_dict())
        logger.info(f"[PRICING] Customer selected: {customer.id} ({len(prices)} negotiated prices)")
        self._notify()
        return ok

    def clear_customer(self) -> None:
        self._generation += 1
        had_state = self._customer is not None or bool(self._custom_prices)
        self._customer = None
        self._custom_prices = _EMPTY
        self.storage.remove(self.storage_key)
        if had_state:
            logger.info("[PRICING] Customer cleared")
            self._notify()

    async def refresh_prices(self) -> bool:
        """Reload the selected customer's prices (e.g. after an admin edit)."""
        if self._customer is None:
            return True
        return await self.select_customer(self._customer)

    async def restore(self) -> Optional[Customer]:
        """Rehydrate the persisted customer, if any, and reload their prices."""
        data = load_json(self.storage, self.storage_key)
        if data is None:
            return None
        try:
            customer = Customer.from_dict(data)
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning(f"[PRICING] Dropping malformed persisted customer: {e}")
            self.storage.remove(self.storage_key)
            return None
        await self.select_customer(customer)
        return self._customer

    async def _load_prices(self, customer_id: str):
        try:
            raw = await self.price_backend.fetch_custom_prices(customer_id)
        except RemoteReadError as e:
            logger.warning(f"[PRICING] Negotiated prices unavailable for {customer_id}: {e}")
            if self.notifications is not None:
                self.notifications.error('Could not load customer prices. Please try again.')
            return _EMPTY, False
        prices: Dict[str, Decimal] = {
            str(pid): Decimal(str(price)) for pid, price in (raw or {}).items()
        }
        return MappingProxyType(prices), True

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("[PRICING] Listener failed")


class SqlCustomPriceBackend:
    """CustomPriceBackend over the customer_price table."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def fetch_custom_prices(self, customer_id: str) -> Mapping[str, Decimal]:
        return await run_in_session(self._session_factory, self._prices, customer_id)

    @staticmethod
    def _prices(session, customer_id):
        rows = session.query(CustomerPrice.product_id, CustomerPrice.price).filter(
            CustomerPrice.customer_id == customer_id
        ).all()
        return {row.product_id: Decimal(str(row.price)) for row in rows}


@runtime_checkable
class CustomerBackend(Protocol):
    """Customer profile lookups."""

    async def fetch_customer(self, customer_id: str) -> Optional[Mapping]:
        ...


async def get_customer(customer_id: str, backend: CustomerBackend,
                       cache: Optional[CacheService] = None) -> Optional[Customer]:
    """Customer profile by id, cached in the profile category."""
    if cache is not None:
        cached = cache.get(PROFILE, customer_id)
        if cached is not None:
            return Customer.from_dict(cached)
    data = await backend.fetch_customer(customer_id)
    if data is None:
        return None
    customer = Customer.from_dict(data)
    if cache is not None:
        cache.put(PROFILE, customer_id, customer.to_dict())
    return customer
