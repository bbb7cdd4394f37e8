"""
Unit tests for customer ledger balances.
"""

import asyncio
from decimal import Decimal

import pytest

from dispensary.exceptions import RemoteReadError
from dispensary.services.balance_service import get_customer_balance, invalidate_customer_balance
from dispensary.services.cache_service import CacheService, LEDGER


class FakeLedger:

    def __init__(self):
        self.balances = {'c1': Decimal('-120.50')}
        self.fail = False
        self.calls = 0

    async def fetch_balance(self, customer_id):
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail:
            raise RemoteReadError('ledger down')
        return self.balances.get(customer_id, Decimal('0'))


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def cache():
    return CacheService.from_config({})


class TestCustomerBalance:
    """Ledger reads through the ledger category."""

    def test_cached(self, ledger, cache):
        async def scenario():
            await get_customer_balance('c1', ledger, cache)
            return await get_customer_balance('c1', ledger, cache)

        assert asyncio.run(scenario()) == Decimal('-120.50')
        assert ledger.calls == 1
        assert cache.get(LEDGER, 'balance:c1') == Decimal('-120.50')

    def test_unknown_customer_is_zero(self, ledger, cache):
        assert asyncio.run(get_customer_balance('c9', ledger, cache)) == Decimal('0')

    def test_invalidate(self, ledger, cache):
        asyncio.run(get_customer_balance('c1', ledger, cache))
        invalidate_customer_balance(cache, 'c1')
        ledger.balances['c1'] = Decimal('0')

        assert asyncio.run(get_customer_balance('c1', ledger, cache)) == Decimal('0')
        assert ledger.calls == 2

    def test_failure_propagates(self, ledger, cache):
        ledger.fail = True
        with pytest.raises(RemoteReadError):
            asyncio.run(get_customer_balance('c1', ledger, cache))
        assert cache.get(LEDGER, 'balance:c1') is None
