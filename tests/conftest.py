import asyncio
from decimal import Decimal

import pytest

from dispensary import database
from dispensary.database import Base, create_all, get_session, init_engine
from dispensary.exceptions import InsufficientStockError, RemoteReadError
from dispensary.models import BulkPrice, Customer, Product, StockMovementStatus
from dispensary.services.cart_service import CartService
from dispensary.services.customer_service import CustomerContext
from dispensary.services.notification_service import NotificationKind, NotificationQueue
from dispensary.services.stock_service import StockService
from dispensary.services.storage_service import MemoryStorage


class FakeStockBackend:
    """In-memory stock store. Set `gate` to hold quantity reads until it is set."""

    def __init__(self, locations=None):
        self.locations = dict(locations or {'shop': 'loc-shop', 'facility': 'loc-facility'})
        self.levels = {}
        self.fail = False
        self.gate = None
        self.location_calls = 0
        self.quantity_calls = 0
        self.movements = {}
        self.discrepancies = []

    def set(self, product_id, quantity, location='shop'):
        self.levels[(product_id, self.locations[location])] = quantity

    async def fetch_location_id(self, name):
        self.location_calls += 1
        await asyncio.sleep(0)
        if self.fail:
            raise RemoteReadError('stock store down')
        return self.locations.get(name)

    async def fetch_quantity(self, product_id, location_id):
        self.quantity_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.fail:
            raise RemoteReadError('stock store down')
        return self.levels.get((product_id, location_id))

    async def fetch_quantities(self, location_id, product_ids):
        await asyncio.sleep(0)
        if self.fail:
            raise RemoteReadError('stock store down')
        return {
            pid: qty for (pid, loc), qty in self.levels.items()
            if loc == location_id and pid in product_ids
        }

    async def store_quantity(self, product_id, location_id, quantity, note=None, created_by=None):
        old = self.levels.get((product_id, location_id), 0)
        self.levels[(product_id, location_id)] = quantity
        return old

    async def record_movement(self, product_id, from_location_id, to_location_id, quantity,
                              movement_type, status, note=None, created_by=None, debit=False):
        await asyncio.sleep(0)
        if debit:
            available = self.levels.get((product_id, from_location_id), 0)
            if available < quantity:
                raise InsufficientStockError(product_id, quantity, available)
            self.levels[(product_id, from_location_id)] = available - quantity
        movement_id = len(self.movements) + 1
        self.movements[movement_id] = {
            'id': movement_id,
            'product_id': product_id,
            'from_location_id': from_location_id,
            'to_location_id': to_location_id,
            'quantity': quantity,
            'type': movement_type,
            'status': status,
            'note': note,
            'created_by': created_by,
        }
        return movement_id

    async def fetch_movement(self, movement_id):
        await asyncio.sleep(0)
        movement = self.movements.get(movement_id)
        return dict(movement) if movement else None

    async def settle_movement(self, movement_id, quantity, status, note=None, discrepancy=None):
        await asyncio.sleep(0)
        movement = self.movements.get(movement_id)
        if movement is None or movement['status'] is not StockMovementStatus.PENDING:
            return False
        key = (movement['product_id'], movement['to_location_id'])
        self.levels[key] = self.levels.get(key, 0) + quantity
        movement.update(quantity=quantity, status=status)
        if note is not None:
            movement['note'] = note
        if discrepancy is not None:
            self.discrepancies.append(dict(discrepancy, movement_id=movement_id))
        return True


class FakePriceBackend:
    """Negotiated prices by customer id."""

    def __init__(self, prices=None):
        self.prices = dict(prices or {})
        self.fail = False
        self.calls = []

    async def fetch_custom_prices(self, customer_id):
        self.calls.append(customer_id)
        await asyncio.sleep(0)
        if self.fail:
            raise RemoteReadError('price store down')
        return dict(self.prices.get(customer_id, {}))


class RecordingQueue(NotificationQueue):
    """NotificationQueue that also keeps every enqueued (kind, message)."""

    def __init__(self, default_duration=0.01):
        super().__init__(default_duration)
        self.log = []

    def enqueue(self, message, kind=None, duration=None):
        notification = super().enqueue(message, kind or NotificationKind.INFO, duration)
        self.log.append((notification.kind.value, message))
        return notification

    def kinds(self):
        return [kind for kind, _ in self.log]


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def stock_backend():
    return FakeStockBackend()


@pytest.fixture
def price_backend():
    return FakePriceBackend()


@pytest.fixture
def notifications():
    return RecordingQueue()


@pytest.fixture
def customers(price_backend, storage, notifications):
    return CustomerContext(price_backend, storage, notifications)


@pytest.fixture
def stock(stock_backend):
    return StockService(stock_backend)


@pytest.fixture
def cart(stock, customers, notifications, storage):
    return CartService(stock, customers, notifications, storage)


@pytest.fixture
def product_x():
    return Product(id='prod-x', name='Blue Dream 1g', price=Decimal('10.00'), category='flower')


@pytest.fixture
def product_y():
    return Product(id='prod-y', name='Gummies 10pk', price=Decimal('10.00'), category='edibles')


@pytest.fixture
def product_z():
    return Product(
        id='prod-z',
        name='Pre-roll',
        price=Decimal('12.00'),
        category='joints',
        bulk_prices=(BulkPrice(1, Decimal('10')), BulkPrice(10, Decimal('8'))),
    )


@pytest.fixture
def customer():
    return Customer(id='cust-1', name='Thandi M.', email='thandi@example.com')


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    init_engine('sqlite://')
    create_all()
    session = get_session()
    yield session
    session.remove()
    Base.metadata.drop_all(database.engine)
    database.engine.dispose()
