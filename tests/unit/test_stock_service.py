"""
Unit tests for the stock query facade.
"""

import asyncio

import pytest

from dispensary.exceptions import InsufficientStockError, NotFoundError, RemoteReadError
from dispensary.models import StockMovementStatus, StockMovementType
from dispensary.services.stock_service import StockService


class TestResolveLocation:
    """Location name resolution."""

    def test_resolves_by_name(self, stock):
        assert asyncio.run(stock.resolve_location('shop')) == 'loc-shop'

    def test_hits_are_cached(self, stock, stock_backend):
        async def scenario():
            await stock.resolve_location('shop')
            await stock.resolve_location('shop')
        asyncio.run(scenario())

        assert stock_backend.location_calls == 1

    def test_misses_are_not_cached(self, stock, stock_backend):
        async def scenario():
            first = await stock.resolve_location('warehouse')
            stock_backend.locations['warehouse'] = 'loc-wh'
            second = await stock.resolve_location('warehouse')
            return first, second

        assert asyncio.run(scenario()) == (None, 'loc-wh')

    def test_forget_locations(self, stock, stock_backend):
        asyncio.run(stock.resolve_location('shop'))
        stock.forget_locations()
        asyncio.run(stock.resolve_location('shop'))

        assert stock_backend.location_calls == 2


class TestGetStock:
    """Fail-closed stock reads."""

    def test_reads_quantity_at_location(self, stock, stock_backend):
        stock_backend.set('p1', 7)
        stock_backend.set('p1', 40, location='facility')

        assert asyncio.run(stock.get_stock('p1', 'shop')) == 7
        assert asyncio.run(stock.get_stock('p1', 'facility')) == 40

    def test_missing_record_is_zero(self, stock):
        assert asyncio.run(stock.get_stock('p1', 'shop')) == 0

    def test_negative_quantity_reads_zero(self, stock, stock_backend):
        stock_backend.set('p1', -3)
        assert asyncio.run(stock.get_stock('p1', 'shop')) == 0

    def test_unknown_location_is_zero(self, stock):
        assert asyncio.run(stock.get_stock('p1', 'moon')) == 0

    def test_remote_error_is_zero(self, stock, stock_backend):
        stock_backend.set('p1', 7)
        stock_backend.fail = True
        assert asyncio.run(stock.get_stock('p1', 'shop')) == 0

    def test_read_stock_raises_on_remote_error(self, stock, stock_backend):
        stock_backend.fail = True
        with pytest.raises(RemoteReadError):
            asyncio.run(stock.read_stock('p1', 'shop'))


class TestGetStockLevels:
    """Batch reads."""

    def test_batch(self, stock, stock_backend):
        stock_backend.set('p1', 3)
        stock_backend.set('p2', 0)
        stock_backend.set('p3', 9, location='facility')

        levels = asyncio.run(stock.get_stock_levels(['p1', 'p2', 'p3'], 'shop'))

        assert levels == {'p1': 3, 'p2': 0}

    def test_empty_request(self, stock, stock_backend):
        assert asyncio.run(stock.get_stock_levels([], 'shop')) == {}
        assert stock_backend.location_calls == 0

    def test_failure_is_empty(self, stock, stock_backend):
        stock_backend.fail = True
        assert asyncio.run(stock.get_stock_levels(['p1'], 'shop')) == {}


class TestAdjustStock:
    """Stocktake writes."""

    def test_returns_previous_quantity(self, stock, stock_backend):
        stock_backend.set('p1', 4)

        old = asyncio.run(stock.adjust_stock('p1', 'shop', 10, note='recount'))

        assert old == 4
        assert stock_backend.levels[('p1', 'loc-shop')] == 10

    def test_negative_rejected(self, stock):
        with pytest.raises(ValueError):
            asyncio.run(stock.adjust_stock('p1', 'shop', -1))

    def test_unknown_location(self, stock):
        with pytest.raises(NotFoundError):
            asyncio.run(stock.adjust_stock('p1', 'moon', 1))


class TestProduction:
    """Facility production runs: pending until confirmed."""

    def test_pending_until_confirmed(self, stock, stock_backend):
        stock_backend.set('p1', 5, location='facility')

        movement_id = asyncio.run(stock.add_production('p1', 20, note='batch 7', created_by='u1'))

        movement = stock_backend.movements[movement_id]
        assert movement['type'] is StockMovementType.PRODUCTION
        assert movement['status'] is StockMovementStatus.PENDING
        assert movement['from_location_id'] is None
        assert movement['to_location_id'] == 'loc-facility'
        assert stock_backend.levels[('p1', 'loc-facility')] == 5

        assert asyncio.run(stock.confirm_production_done(movement_id)) is True
        assert stock_backend.levels[('p1', 'loc-facility')] == 25
        assert stock_backend.movements[movement_id]['status'] is StockMovementStatus.DONE

    def test_confirm_twice_credits_once(self, stock, stock_backend):
        async def scenario():
            movement_id = await stock.add_production('p1', 10)
            first = await stock.confirm_production_done(movement_id)
            second = await stock.confirm_production_done(movement_id)
            return first, second

        assert asyncio.run(scenario()) == (True, False)
        assert stock_backend.levels[('p1', 'loc-facility')] == 10

    def test_confirm_unknown_movement(self, stock):
        with pytest.raises(NotFoundError):
            asyncio.run(stock.confirm_production_done(404))

    def test_confirm_rejects_other_movement_types(self, stock, stock_backend):
        stock_backend.set('p1', 3)
        sale_id = asyncio.run(stock.sell_from_shop('p1', 1))

        with pytest.raises(NotFoundError):
            asyncio.run(stock.confirm_production_done(sale_id))

    def test_quantity_must_be_positive(self, stock, stock_backend):
        with pytest.raises(ValueError):
            asyncio.run(stock.add_production('p1', 0))
        assert stock_backend.movements == {}

    def test_missing_facility(self, stock_backend):
        stock = StockService(stock_backend, facility_location='plant-2')

        with pytest.raises(NotFoundError):
            asyncio.run(stock.add_production('p1', 4))


class TestTransfers:
    """Facility -> shop transfers settled by the shop."""

    def test_transfer_debits_facility_now(self, stock, stock_backend):
        stock_backend.set('p1', 30, location='facility')

        movement_id = asyncio.run(stock.transfer_to_shop('p1', 12, note='weekly'))

        assert stock_backend.levels[('p1', 'loc-facility')] == 18
        assert ('p1', 'loc-shop') not in stock_backend.levels
        movement = stock_backend.movements[movement_id]
        assert movement['status'] is StockMovementStatus.PENDING
        assert (movement['from_location_id'], movement['to_location_id']) == ('loc-facility', 'loc-shop')

    def test_transfer_beyond_facility_stock(self, stock, stock_backend):
        stock_backend.set('p1', 4, location='facility')

        with pytest.raises(InsufficientStockError) as exc:
            asyncio.run(stock.transfer_to_shop('p1', 5))

        assert exc.value.available == 4
        assert stock_backend.levels[('p1', 'loc-facility')] == 4
        assert stock_backend.movements == {}

    def test_accept_credits_actual_quantity(self, stock, stock_backend):
        stock_backend.set('p1', 30, location='facility')
        stock_backend.set('p1', 2)

        async def scenario():
            movement_id = await stock.transfer_to_shop('p1', 12)
            accepted = await stock.accept_stock_transfer(movement_id, 12)
            return movement_id, accepted

        movement_id, accepted = asyncio.run(scenario())

        assert accepted is True
        assert stock_backend.levels[('p1', 'loc-shop')] == 14
        assert stock_backend.movements[movement_id]['status'] is StockMovementStatus.DONE
        assert stock_backend.discrepancies == []

    def test_reject_logs_discrepancy(self, stock, stock_backend):
        stock_backend.set('p1', 30, location='facility')

        async def scenario():
            movement_id = await stock.transfer_to_shop('p1', 12)
            rejected = await stock.reject_stock_transfer(movement_id, 9, 'three crushed', reported_by='u2')
            return movement_id, rejected

        movement_id, rejected = asyncio.run(scenario())

        assert rejected is True
        assert stock_backend.levels[('p1', 'loc-shop')] == 9
        movement = stock_backend.movements[movement_id]
        assert movement['status'] is StockMovementStatus.REJECTED
        assert movement['quantity'] == 9
        assert movement['note'] == 'three crushed'
        assert stock_backend.discrepancies == [{
            'movement_id': movement_id,
            'product_id': 'p1',
            'expected_quantity': 12,
            'actual_quantity': 9,
            'reason': 'three crushed',
            'reported_by': 'u2',
        }]

    def test_settled_transfer_is_not_settled_again(self, stock, stock_backend):
        stock_backend.set('p1', 30, location='facility')

        async def scenario():
            movement_id = await stock.transfer_to_shop('p1', 10)
            await stock.reject_stock_transfer(movement_id, 8, 'short')
            accepted = await stock.accept_stock_transfer(movement_id, 10)
            rejected = await stock.reject_stock_transfer(movement_id, 8, 'short')
            return accepted, rejected

        assert asyncio.run(scenario()) == (False, False)
        assert stock_backend.levels[('p1', 'loc-shop')] == 8
        assert len(stock_backend.discrepancies) == 1

    def test_accept_rejects_production_id(self, stock):
        movement_id = asyncio.run(stock.add_production('p1', 3))

        with pytest.raises(NotFoundError):
            asyncio.run(stock.accept_stock_transfer(movement_id, 3))

    def test_negative_actual_quantity(self, stock):
        with pytest.raises(ValueError):
            asyncio.run(stock.accept_stock_transfer(1, -1))


class TestSellFromShop:
    """Sales leave shop stock immediately."""

    def test_sale_is_done(self, stock, stock_backend):
        stock_backend.set('p1', 6)

        movement_id = asyncio.run(stock.sell_from_shop('p1', 2, note='order 88'))

        assert stock_backend.levels[('p1', 'loc-shop')] == 4
        movement = stock_backend.movements[movement_id]
        assert movement['type'] is StockMovementType.SALE
        assert movement['status'] is StockMovementStatus.DONE
        assert movement['to_location_id'] is None

    def test_sale_beyond_stock(self, stock, stock_backend):
        stock_backend.set('p1', 1)

        with pytest.raises(InsufficientStockError):
            asyncio.run(stock.sell_from_shop('p1', 2))
        assert stock_backend.levels[('p1', 'loc-shop')] == 1
