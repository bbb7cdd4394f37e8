"""
Storefront session - wires the cart core together for one application session.

Every service is constructed here and injected; nothing in the core is a
module-level singleton.
"""
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from flask import Flask, current_app

from dispensary.services.cache_service import CacheService
from dispensary.services.cart_service import CartService
from dispensary.services.customer_service import CustomerContext, CustomPriceBackend, SqlCustomPriceBackend
from dispensary.services.notification_service import NotificationQueue
from dispensary.services.stock_service import StockService, StockBackend, SqlStockBackend
from dispensary.services.storage_service import DurableStorage, MemoryStorage, RedisStorage

logger = logging.getLogger(__name__)


@dataclass
class StorefrontSession:
    storage: DurableStorage
    cache: CacheService
    notifications: NotificationQueue
    stock: StockService
    customers: CustomerContext
    cart: CartService

    async def start(self) -> None:
        """Rehydrate persisted state and start the cache sweeper."""
        self.cart.attach()
        loaded = self.cart.load()
        await self.customers.restore()
        self.cache.start_sweeper()
        logger.info(f"[SESSION] Started: {loaded} cart lines restored, pos={self.customers.is_pos_session}")

    async def close(self) -> None:
        await self.cache.stop_sweeper()
        self.cart.close()
        self.notifications.clear()


def build_storage(config: Mapping[str, Any]) -> DurableStorage:
    if not config.get('CACHE_ENABLED', True):
        logger.info("[STORAGE] Redis disabled via config, using memory storage")
        return MemoryStorage()
    return RedisStorage.from_url(
        config.get('REDIS_URL', 'redis://redis:6379/0'),
        prefix=config.get('CACHE_KEY_PREFIX', 'dispensary'),
    )


def build_session(
    config: Mapping[str, Any],
    session_factory=None,
    storage: Optional[DurableStorage] = None,
    stock_backend: Optional[StockBackend] = None,
    price_backend: Optional[CustomPriceBackend] = None,
) -> StorefrontSession:
    """
    Build a session from config. Backends default to the SQL adapters
    over `session_factory`.
    """
    if stock_backend is None or price_backend is None:
        if session_factory is None:
            raise ValueError('session_factory is required when a backend is not given')
        stock_backend = stock_backend or SqlStockBackend(session_factory)
        price_backend = price_backend or SqlCustomPriceBackend(session_factory)

    storage = storage if storage is not None else build_storage(config)
    notifications = NotificationQueue(float(config.get('NOTIFICATION_DURATION', 3.0)))
    cache = CacheService.from_config(config, storage)
    stock = StockService(
        stock_backend,
        shop_location=config.get('SHOP_LOCATION_NAME', 'shop'),
        facility_location=config.get('FACILITY_LOCATION_NAME', 'facility'),
    )
    customers = CustomerContext(
        price_backend,
        storage,
        notifications,
        storage_key=config.get('SELECTED_CUSTOMER_KEY', 'selectedCustomer'),
    )
    cart = CartService.from_config(config, stock, customers, notifications, storage)
    return StorefrontSession(storage, cache, notifications, stock, customers, cart)


def init_storefront(app: Flask, **overrides) -> StorefrontSession:
    """Build the session from app config and register it on the app."""
    from dispensary.database import get_session

    storefront = build_session(app.config, session_factory=overrides.pop('session_factory', get_session()),
                               **overrides)
    if not hasattr(app, 'extensions'):
        app.extensions = {}
    app.extensions['dispensary'] = storefront
    return storefront


def get_storefront() -> StorefrontSession:
    """Storefront session of the current Flask app."""
    storefront = current_app.extensions.get('dispensary')
    if storefront is None:
        raise RuntimeError("Storefront not initialized.")
    return storefront
