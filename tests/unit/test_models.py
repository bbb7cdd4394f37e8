"""
Unit tests for cart snapshots and SQLAlchemy models.
"""

from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from dispensary.models import (
    BulkPrice, CartLine, Customer, CustomerPrice, Product,
    StockDiscrepancy, StockLevel, StockLocation, StockMovement, StockMovementStatus, StockMovementType
)


class TestProduct:
    """Tests for the Product snapshot."""

    def test_prices_coerced_to_decimal(self):
        product = Product(id='p1', name='Haze', price=12.5, special_price='9.99',
                          bulk_prices=[{'min_qty': 3, 'price': '11'}])

        assert product.price == Decimal('12.5')
        assert product.special_price == Decimal('9.99')
        assert product.bulk_prices == (BulkPrice(3, Decimal('11')),)

    def test_immutable(self, product_x):
        with pytest.raises(FrozenInstanceError):
            product_x.price = Decimal('1')

    def test_dict_round_trip_drops_page_quantity(self, product_z):
        data = {**product_z.to_dict()}
        assert 'quantity' not in data
        assert Product.from_dict(data) == product_z


class TestCartLine:
    """Tests for CartLine."""

    def test_line_total(self, product_x):
        line = CartLine(product_x, 3, Decimal('9.50'))
        assert line.line_total == Decimal('28.50')
        assert line.product_id == 'prod-x'

    def test_with_quantity_returns_new_line(self, product_x):
        line = CartLine(product_x, 3, Decimal('10.00'))
        updated = line.with_quantity(5, Decimal('9.00'))

        assert line.quantity == 3
        assert updated.quantity == 5
        assert updated.unit_price == Decimal('9.00')

    def test_from_dict_requires_product(self):
        with pytest.raises(KeyError):
            CartLine.from_dict({'quantity': 1, 'unit_price': '1'})


class TestCustomer:

    def test_round_trip(self, customer):
        assert Customer.from_dict(customer.to_dict()) == customer


class TestStockModels:
    """Tests for the stock tables."""

    def test_location_gets_generated_id(self, db_session):
        location = StockLocation(name='shop')
        db_session.add(location)
        db_session.commit()

        assert location.id is not None
        assert len(location.id) == 32

    def test_location_name_unique(self, db_session):
        db_session.add(StockLocation(name='shop'))
        db_session.commit()
        db_session.add(StockLocation(name='shop'))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_stock_level_per_location(self, db_session):
        shop = StockLocation(name='shop')
        facility = StockLocation(name='facility')
        db_session.add_all([shop, facility])
        db_session.flush()
        db_session.add_all([
            StockLevel(product_id='p1', location_id=shop.id, quantity=4),
            StockLevel(product_id='p1', location_id=facility.id, quantity=40),
        ])
        db_session.commit()

        levels = {
            level.location.name: level.quantity
            for level in db_session.query(StockLevel).filter_by(product_id='p1')
        }
        assert levels == {'shop': 4, 'facility': 40}

    def test_movement_defaults_to_done(self, db_session):
        shop = StockLocation(name='shop')
        db_session.add(shop)
        db_session.flush()
        movement = StockMovement(product_id='p1', to_location_id=shop.id, quantity=10,
                                 type=StockMovementType.PRODUCTION)
        db_session.add(movement)
        db_session.commit()

        assert movement.id is not None
        assert movement.status == StockMovementStatus.DONE
        assert movement.created_at is not None

    def test_discrepancy_links_movement(self, db_session):
        facility = StockLocation(name='facility')
        shop = StockLocation(name='shop')
        db_session.add_all([facility, shop])
        db_session.flush()
        movement = StockMovement(product_id='p1', from_location_id=facility.id, to_location_id=shop.id,
                                 quantity=8, type=StockMovementType.TRANSFER, status=StockMovementStatus.REJECTED)
        db_session.add(movement)
        db_session.flush()
        db_session.add(StockDiscrepancy(movement_id=movement.id, product_id='p1', expected_quantity=10,
                                        actual_quantity=8, reason='two missing'))
        db_session.commit()

        discrepancy = db_session.query(StockDiscrepancy).one()
        assert discrepancy.movement is movement
        assert discrepancy.created_at is not None


class TestCustomerPriceModel:

    def test_one_price_per_customer_and_product(self, db_session):
        db_session.add(CustomerPrice(customer_id='c1', product_id='p1', price=Decimal('8.00')))
        db_session.commit()
        db_session.expunge_all()
        db_session.add(CustomerPrice(customer_id='c1', product_id='p1', price=Decimal('7.00')))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()
