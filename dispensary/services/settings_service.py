"""Store settings - cached in the single settings slot, defaults on failure."""
import logging
from dataclasses import dataclass, field, asdict, fields
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from dispensary.exceptions import RemoteReadError
from dispensary.services.cache_service import CacheService, SETTINGS

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


@dataclass(frozen=True)
class StoreSettings:
    store_name: str = 'My POS Store'
    store_email: str = 'store@example.com'
    store_phone: str = ''
    store_address: str = ''
    currency: str = 'ZAR'
    tax_rate: Decimal = Decimal('15')
    shipping_fee: Decimal = Decimal('50')
    min_order_amount: Decimal = Decimal('100')
    free_shipping_threshold: Decimal = Decimal('500')
    business_hours: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'StoreSettings':
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and v is not None}
        for money in ('tax_rate', 'shipping_fee', 'min_order_amount', 'free_shipping_threshold'):
            if money in values:
                values[money] = Decimal(str(values[money]))
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@runtime_checkable
class SettingsBackend(Protocol):

    async def fetch_store_settings(self) -> Mapping[str, Any]:
        ...


async def get_store_settings(backend: SettingsBackend, cache: Optional[CacheService] = None) -> StoreSettings:
    """
    Return store settings, from cache when fresh.

    A remote failure returns the defaults without caching them, so the
    next call tries again.
    """
    if cache is not None:
        cached = cache.get(SETTINGS)
        if cached is not None:
            return StoreSettings.from_dict(cached)
    try:
        data = await backend.fetch_store_settings()
    except RemoteReadError as e:
        logger.warning(f"[SETTINGS] Using defaults, fetch failed: {e}")
        return StoreSettings()
    settings = StoreSettings.from_dict(data or {})
    if cache is not None:
        cache.put(SETTINGS, None, settings.to_dict())
    return settings


def clear_settings_cache(cache: CacheService) -> None:
    """Call after settings are edited."""
    cache.invalidate(SETTINGS)


def calculate_tax(subtotal: Decimal, settings: StoreSettings) -> Decimal:
    return (subtotal * settings.tax_rate / Decimal('100')).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_shipping(subtotal: Decimal, settings: StoreSettings, is_pos_order: bool = False) -> Decimal:
    """POS orders ship nothing; online orders ship free above the threshold."""
    if is_pos_order or subtotal >= settings.free_shipping_threshold:
        return Decimal('0.00')
    return settings.shipping_fee.quantize(CENT)
