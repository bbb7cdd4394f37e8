"""Product reads through the product cache."""
import logging
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from dispensary.exceptions import RemoteReadError
from dispensary.models import Product
from dispensary.services.cache_service import CacheService, PRODUCT

logger = logging.getLogger(__name__)


@runtime_checkable
class ProductBackend(Protocol):

    async def fetch_product(self, product_id: str) -> Optional[Mapping[str, Any]]:
        ...


async def get_product(product_id: str, backend: ProductBackend,
                      cache: Optional[CacheService] = None) -> Optional[Product]:
    """Product snapshot by id; None when unknown or the catalog is unreachable."""
    if cache is not None:
        cached = cache.get(PRODUCT, product_id)
        if cached is not None:
            return Product.from_dict(cached)
    try:
        data = await backend.fetch_product(product_id)
    except RemoteReadError as e:
        logger.warning(f"[CATALOG] Product {product_id} unavailable: {e}")
        return None
    if data is None:
        return None
    product = Product.from_dict(data)
    if cache is not None:
        cache.put(PRODUCT, product_id, product.to_dict())
    return product


def invalidate_product(cache: CacheService, product_id: str) -> None:
    cache.invalidate(PRODUCT, product_id)
