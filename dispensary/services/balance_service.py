"""Balance service - customer credit/debt reads through the ledger cache."""
import logging
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from dispensary.services.cache_service import CacheService, LEDGER

logger = logging.getLogger(__name__)


@runtime_checkable
class LedgerBackend(Protocol):
    """Read side of the remote credit ledger."""

    async def fetch_balance(self, customer_id: str) -> Decimal:
        """Positive = credit, negative = debt."""
        ...


def _balance_cache_key(customer_id: str) -> str:
    return f"balance:{customer_id}"


async def get_customer_balance(customer_id: str, backend: LedgerBackend,
                               cache: Optional[CacheService] = None) -> Decimal:
    """
    Customer balance, cached in the ledger category.

    Raises:
        RemoteReadError: ledger unreachable and nothing cached
    """
    if cache is None:
        return Decimal(str(await backend.fetch_balance(customer_id)))

    async def load():
        return Decimal(str(await backend.fetch_balance(customer_id)))

    balance = await cache.get_or_load(LEDGER, _balance_cache_key(customer_id), load)
    return Decimal(str(balance))


def invalidate_customer_balance(cache: CacheService, customer_id: str) -> None:
    """Call after anything posts to the customer's ledger (orders, payments)."""
    cache.invalidate(LEDGER, _balance_cache_key(customer_id))
    logger.debug(f"[CACHE] Balance invalidated: customer={customer_id}")
