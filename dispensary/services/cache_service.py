"""
Expiring in-memory cache with optional durable persistence.

Each category (product, profile, ledger, settings) is an independent
namespace with its own TTL. Durable categories mirror their whole
namespace into DurableStorage on every write and are rehydrated on start.

Storage key pattern for durable namespaces: cache:{category}
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional

from dispensary.services.storage_service import DurableStorage, load_json, dump_json

logger = logging.getLogger(__name__)

PRODUCT = 'product'
PROFILE = 'profile'
LEDGER = 'ledger'
SETTINGS = 'settings'

# Key used internally for unkeyed (single slot) categories
_SLOT = '__slot__'


@dataclass(frozen=True)
class CacheCategory:
    """Namespace definition: TTL in seconds, durability, keyed or single slot."""

    name: str
    ttl: float
    durable: bool = False
    keyed: bool = True


@dataclass(frozen=True)
class CacheEntry:
    data: Any
    timestamp: float


def categories_from_config(config: Mapping[str, Any]) -> Dict[str, CacheCategory]:
    """Build the default category set from a config mapping."""
    durable = {
        name.strip() for name in str(config.get('CACHE_DURABLE_CATEGORIES', SETTINGS)).split(',')
        if name.strip()
    }
    return {
        PRODUCT: CacheCategory(PRODUCT, float(config.get('CACHE_PRODUCT_TTL', 300)), PRODUCT in durable),
        PROFILE: CacheCategory(PROFILE, float(config.get('CACHE_PROFILE_TTL', 1800)), PROFILE in durable),
        LEDGER: CacheCategory(LEDGER, float(config.get('CACHE_LEDGER_TTL', 300)), LEDGER in durable),
        SETTINGS: CacheCategory(SETTINGS, float(config.get('CACHE_SETTINGS_TTL', 86400)), SETTINGS in durable,
                                keyed=False),
    }


class CacheService:
    """
    Per-category expiring cache.

    Usage:
        cache = CacheService.from_config(app.config, storage)
        cache.put('product', product_id, data)
        cache.get('product', product_id)
        cache.put('settings', None, settings)   # single slot
    """

    def __init__(
        self,
        categories: Iterable[CacheCategory],
        storage: Optional[DurableStorage] = None,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 300,
    ):
        self._categories: Dict[str, CacheCategory] = {c.name: c for c in categories}
        self._storage = storage
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._sweeper: Optional[asyncio.Task] = None
        self._namespaces: Dict[str, Dict[str, CacheEntry]] = {}

        for category in self._categories.values():
            self._namespaces[category.name] = self._load_namespace(category)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], storage: Optional[DurableStorage] = None,
                    clock: Callable[[], float] = time.time) -> 'CacheService':
        return cls(
            categories_from_config(config).values(),
            storage=storage,
            clock=clock,
            sweep_interval=float(config.get('CACHE_SWEEP_INTERVAL', 300)),
        )

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def put(self, category: str, key: Optional[str], value: Any) -> None:
        """Store value, replacing any previous entry for the key."""
        cat = self._category(category)
        slot = self._slot_key(cat, key)
        namespace = dict(self._namespaces[cat.name])
        namespace[slot] = CacheEntry(value, self._clock())
        self._namespaces[cat.name] = namespace
        self._persist(cat)
        logger.debug(f"[CACHE] SET: {cat.name}:{slot}")

    def get(self, category: str, key: Optional[str] = None) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""
        cat = self._category(category)
        entry = self._namespaces[cat.name].get(self._slot_key(cat, key))
        if entry is None or not self._is_valid(cat, entry):
            return None
        return entry.data

    def invalidate(self, category: str, key: Optional[str] = None) -> None:
        cat = self._category(category)
        slot = self._slot_key(cat, key)
        if slot not in self._namespaces[cat.name]:
            return
        namespace = dict(self._namespaces[cat.name])
        del namespace[slot]
        self._namespaces[cat.name] = namespace
        self._persist(cat)
        logger.info(f"[CACHE] INVALIDATE: {cat.name}:{slot}")

    def clear(self, category: str) -> None:
        cat = self._category(category)
        self._namespaces[cat.name] = {}
        self._persist(cat)
        logger.info(f"[CACHE] CLEAR: {cat.name}")

    async def get_or_load(self, category: str, key: Optional[str],
                          loader_fn: Callable[[], Awaitable[Any]]) -> Any:
        """Cache-aside pattern: get from cache, or await the loader and cache."""
        cached = self.get(category, key)
        if cached is not None:
            logger.debug(f"[CACHE] HIT: {category}:{key}")
            return cached
        logger.debug(f"[CACHE] MISS: {category}:{key}")
        value = await loader_fn()
        if value is not None:
            self.put(category, key, value)
        return value

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Physically drop expired entries from every category."""
        removed = 0
        for cat in self._categories.values():
            namespace = self._namespaces[cat.name]
            alive = {k: e for k, e in namespace.items() if self._is_valid(cat, e)}
            if len(alive) != len(namespace):
                removed += len(namespace) - len(alive)
                self._namespaces[cat.name] = alive
                self._persist(cat)
        if removed:
            logger.debug(f"[CACHE] SWEEP: {removed} expired entries removed")
        return removed

    def start_sweeper(self) -> asyncio.Task:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def entry_count(self, category: str) -> int:
        """Physical entry count, expired entries included."""
        return len(self._namespaces[self._category(category).name])

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _category(self, name: str) -> CacheCategory:
        try:
            return self._categories[name]
        except KeyError:
            raise ValueError(f"Unknown cache category: {name!r}") from None

    @staticmethod
    def _slot_key(cat: CacheCategory, key: Optional[str]) -> str:
        if not cat.keyed:
            if key is not None:
                raise ValueError(f"Cache category {cat.name!r} is a single slot; key must be None")
            return _SLOT
        if key is None:
            raise ValueError(f"Cache category {cat.name!r} requires a key")
        return str(key)

    def _is_valid(self, cat: CacheCategory, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp < cat.ttl

    @staticmethod
    def _storage_key(cat: CacheCategory) -> str:
        return f"cache:{cat.name}"

    def _persist(self, cat: CacheCategory) -> None:
        if not cat.durable or self._storage is None:
            return
        payload = {
            key: {'data': entry.data, 'timestamp': entry.timestamp}
            for key, entry in self._namespaces[cat.name].items()
        }
        try:
            dump_json(self._storage, self._storage_key(cat), payload)
        except TypeError as e:
            logger.warning(f"[CACHE] Cannot persist '{cat.name}' namespace: {e}")

    def _load_namespace(self, cat: CacheCategory) -> Dict[str, CacheEntry]:
        if not cat.durable or self._storage is None:
            return {}
        payload = load_json(self._storage, self._storage_key(cat))
        if payload is None:
            return {}
        try:
            return {
                key: CacheEntry(raw['data'], float(raw['timestamp']))
                for key, raw in payload.items()
            }
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"[CACHE] Dropping malformed '{cat.name}' namespace: {e}")
            self._storage.remove(self._storage_key(cat))
            return {}
