"""
Stock service - location resolution and per-location quantities.

The remote store owns every quantity; this module only reads and writes
through a StockBackend. Cart-validation reads are fail-closed: any remote
error reads as zero units, so the cart refuses rather than oversells. The
authoritative check happens in the remote pay-order operation at checkout.

Goods move facility -> shop as movements. Production and transfers start
pending and only reach stock when confirmed at the receiving end; a sale
is done immediately. A settled movement (done or rejected) is never
settled again.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from dispensary.database import run_in_session
from dispensary.exceptions import InsufficientStockError, NotFoundError, RemoteReadError
from dispensary.models import (
    StockDiscrepancy, StockLevel, StockLocation, StockMovement, StockMovementStatus, StockMovementType
)

logger = logging.getLogger(__name__)


@runtime_checkable
class StockBackend(Protocol):
    """Interface for the remote stock store. Every call is a suspension point."""

    async def fetch_location_id(self, name: str) -> Optional[str]:
        ...

    async def fetch_quantity(self, product_id: str, location_id: str) -> Optional[int]:
        ...

    async def fetch_quantities(self, location_id: str, product_ids: List[str]) -> Dict[str, int]:
        ...

    async def store_quantity(self, product_id: str, location_id: str, quantity: int,
                             note: Optional[str] = None, created_by: Optional[str] = None) -> int:
        """Upsert the quantity, record an adjustment movement, return the old quantity."""
        ...

    async def record_movement(self, product_id: str, from_location_id: Optional[str],
                              to_location_id: Optional[str], quantity: int,
                              movement_type: StockMovementType, status: StockMovementStatus,
                              note: Optional[str] = None, created_by: Optional[str] = None,
                              debit: bool = False) -> int:
        """
        Insert a movement and return its id.

        With debit=True the quantity leaves from_location_id in the same
        transaction; InsufficientStockError if that would go below zero.
        """
        ...

    async def fetch_movement(self, movement_id: int) -> Optional[Dict[str, Any]]:
        ...

    async def settle_movement(self, movement_id: int, quantity: int, status: StockMovementStatus,
                              note: Optional[str] = None,
                              discrepancy: Optional[Dict[str, Any]] = None) -> bool:
        """
        Credit `quantity` to the movement's destination and close it.

        Returns False, changing nothing, when the movement is not pending.
        """
        ...


class StockService:
    """
    Stock query facade.

    Usage:
        stock = StockService(SqlStockBackend(get_session))
        qty = await stock.get_stock(product_id, 'shop')
        movement_id = await stock.transfer_to_shop(product_id, 12)
        await stock.accept_stock_transfer(movement_id, 12)
    """

    def __init__(self, backend: StockBackend, shop_location: str = 'shop',
                 facility_location: str = 'facility'):
        self.backend = backend
        self.shop_location = shop_location
        self.facility_location = facility_location
        self._locations: Dict[str, str] = {}

    async def resolve_location(self, name: str) -> Optional[str]:
        """
        Resolve a location name to its id.

        Hits are cached for the lifetime of the service; misses are not,
        so a location created later is still found.
        """
        if name in self._locations:
            return self._locations[name]
        location_id = await self.backend.fetch_location_id(name)
        if location_id is not None:
            self._locations[name] = location_id
            logger.debug(f"[STOCK] Location resolved: {name} -> {location_id}")
        return location_id

    def forget_locations(self) -> None:
        self._locations.clear()

    async def get_quantity(self, product_id: str, location_id: str) -> int:
        """Quantity at a location; a missing record counts as zero. Errors propagate."""
        quantity = await self.backend.fetch_quantity(product_id, location_id)
        return max(0, int(quantity or 0))

    async def get_stock(self, product_id: str, location_name: str) -> int:
        """
        Fail-closed stock read for cart validation.

        Remote errors and unknown locations both read as 0. Cancellation
        still propagates.
        """
        try:
            location_id = await self.resolve_location(location_name)
            if location_id is None:
                logger.warning(f"[STOCK] Unknown location '{location_name}', treating as no stock")
                return 0
            return await self.get_quantity(product_id, location_id)
        except RemoteReadError as e:
            logger.warning(f"[STOCK] Read failed for {product_id}@{location_name}, treating as no stock: {e}")
            return 0

    async def read_stock(self, product_id: str, location_name: str) -> int:
        """Like get_stock but raises RemoteReadError so callers can tell failure from zero."""
        location_id = await self.resolve_location(location_name)
        if location_id is None:
            return 0
        return await self.get_quantity(product_id, location_id)

    async def get_stock_levels(self, product_ids: Iterable[str], location_name: str) -> Dict[str, int]:
        """Batch read for product listings; fail-closed to an empty mapping."""
        product_ids = list(product_ids)
        if not product_ids:
            return {}
        try:
            location_id = await self.resolve_location(location_name)
            if location_id is None:
                return {}
            levels = await self.backend.fetch_quantities(location_id, product_ids)
        except RemoteReadError as e:
            logger.warning(f"[STOCK] Batch read failed at {location_name}: {e}")
            return {}
        return {pid: max(0, int(qty)) for pid, qty in levels.items()}

    async def adjust_stock(self, product_id: str, location_name: str, new_quantity: int,
                           note: Optional[str] = None, created_by: Optional[str] = None) -> int:
        """
        Stocktake: set the quantity at a location and log the difference.

        Returns the previous quantity.

        Raises:
            NotFoundError: location does not exist
            ValueError: negative quantity
        """
        if new_quantity < 0:
            raise ValueError('Quantity cannot be negative')
        location_id = await self._require_location(location_name)
        old_quantity = await self.backend.store_quantity(product_id, location_id, new_quantity,
                                                         note=note, created_by=created_by)
        logger.info(f"[STOCK] Adjusted {product_id}@{location_name}: {old_quantity} -> {new_quantity}")
        return old_quantity

    # ======================================================================
    # Movements
    # ======================================================================

    async def add_production(self, product_id: str, quantity: int, note: Optional[str] = None,
                             created_by: Optional[str] = None) -> int:
        """
        Log a production run into the facility as a pending movement.

        Facility stock is unchanged until confirm_production_done.

        Returns:
            The movement id
        """
        _require_positive(quantity)
        facility_id = await self._require_location(self.facility_location)
        movement_id = await self.backend.record_movement(
            product_id, None, facility_id, quantity,
            StockMovementType.PRODUCTION, StockMovementStatus.PENDING,
            note=note, created_by=created_by,
        )
        logger.info(f"[STOCK] Production #{movement_id} pending: {quantity} x {product_id}")
        return movement_id

    async def confirm_production_done(self, movement_id: int) -> bool:
        """
        Credit a pending production run to facility stock.

        Returns False if the movement was already settled.

        Raises:
            NotFoundError: no production movement with that id
        """
        movement = await self._require_movement(movement_id, StockMovementType.PRODUCTION)
        settled = await self.backend.settle_movement(movement_id, movement['quantity'], StockMovementStatus.DONE)
        if settled:
            logger.info(f"[STOCK] Production #{movement_id} done: +{movement['quantity']} {movement['product_id']}")
        return settled

    async def transfer_to_shop(self, product_id: str, quantity: int, note: Optional[str] = None,
                               created_by: Optional[str] = None) -> int:
        """
        Ship units from the facility to the shop.

        Facility stock drops now; shop stock rises when the shop accepts
        or rejects the transfer.

        Raises:
            InsufficientStockError: the facility holds fewer units
        """
        _require_positive(quantity)
        facility_id = await self._require_location(self.facility_location)
        shop_id = await self._require_location(self.shop_location)
        movement_id = await self.backend.record_movement(
            product_id, facility_id, shop_id, quantity,
            StockMovementType.TRANSFER, StockMovementStatus.PENDING,
            note=note, created_by=created_by, debit=True,
        )
        logger.info(f"[STOCK] Transfer #{movement_id} pending: {quantity} x {product_id}")
        return movement_id

    async def sell_from_shop(self, product_id: str, quantity: int, note: Optional[str] = None,
                             created_by: Optional[str] = None) -> int:
        """
        Take sold units out of shop stock.

        Raises:
            InsufficientStockError: the shop holds fewer units
        """
        _require_positive(quantity)
        shop_id = await self._require_location(self.shop_location)
        movement_id = await self.backend.record_movement(
            product_id, shop_id, None, quantity,
            StockMovementType.SALE, StockMovementStatus.DONE,
            note=note, created_by=created_by, debit=True,
        )
        logger.info(f"[STOCK] Sale #{movement_id}: -{quantity} {product_id}")
        return movement_id

    async def accept_stock_transfer(self, movement_id: int, actual_quantity: int) -> bool:
        """
        Shop confirms receipt of a transfer.

        The movement is closed with the quantity actually received, which
        is what reaches shop stock.
        """
        if actual_quantity < 0:
            raise ValueError('Quantity cannot be negative')
        movement = await self._require_movement(movement_id, StockMovementType.TRANSFER)
        settled = await self.backend.settle_movement(movement_id, actual_quantity, StockMovementStatus.DONE)
        if settled:
            logger.info(f"[STOCK] Transfer #{movement_id} accepted: {actual_quantity}/{movement['quantity']}")
        return settled

    async def reject_stock_transfer(self, movement_id: int, actual_quantity: int, reason: str,
                                    reported_by: Optional[str] = None) -> bool:
        """
        Shop reports a short or damaged transfer.

        The units that did arrive still reach shop stock. The movement is
        closed as rejected and a discrepancy is logged against it.
        """
        if actual_quantity < 0:
            raise ValueError('Quantity cannot be negative')
        movement = await self._require_movement(movement_id, StockMovementType.TRANSFER)
        discrepancy = {
            'product_id': movement['product_id'],
            'expected_quantity': movement['quantity'],
            'actual_quantity': actual_quantity,
            'reason': reason,
            'reported_by': reported_by,
        }
        settled = await self.backend.settle_movement(movement_id, actual_quantity, StockMovementStatus.REJECTED,
                                                     note=reason, discrepancy=discrepancy)
        if settled:
            logger.warning(f"[STOCK] Transfer #{movement_id} rejected: "
                           f"{actual_quantity}/{movement['quantity']} received ({reason})")
        return settled

    async def _require_location(self, name: str) -> str:
        location_id = await self.resolve_location(name)
        if location_id is None:
            raise NotFoundError(f"Location '{name}' not found")
        return location_id

    async def _require_movement(self, movement_id: int, movement_type: StockMovementType) -> Dict[str, Any]:
        movement = await self.backend.fetch_movement(movement_id)
        if movement is None or movement['type'] is not movement_type:
            raise NotFoundError(f"{movement_type.value.capitalize()} movement not found",
                                payload={'movement_id': movement_id})
        return movement


def _require_positive(quantity: int) -> None:
    if quantity <= 0:
        raise ValueError('Quantity must be positive')


class SqlStockBackend:
    """
    StockBackend over the stock_location / stock_level / stock_movement /
    stock_discrepancy tables.

    Queries are blocking, so each runs in a worker thread with its own
    session from the factory.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def _run(self, fn, *args):
        return await run_in_session(self._session_factory, fn, *args)

    async def fetch_location_id(self, name: str) -> Optional[str]:
        return await self._run(self._location_id, name)

    async def fetch_quantity(self, product_id: str, location_id: str) -> Optional[int]:
        return await self._run(self._quantity, product_id, location_id)

    async def fetch_quantities(self, location_id: str, product_ids: List[str]) -> Dict[str, int]:
        return await self._run(self._quantities, location_id, product_ids)

    async def store_quantity(self, product_id: str, location_id: str, quantity: int,
                             note: Optional[str] = None, created_by: Optional[str] = None) -> int:
        return await self._run(self._store, product_id, location_id, quantity, note, created_by)

    @staticmethod
    def _location_id(session, name):
        location = session.query(StockLocation).filter(StockLocation.name == name).first()
        return location.id if location else None

    @staticmethod
    def _quantity(session, product_id, location_id):
        level = session.query(StockLevel).filter(
            StockLevel.product_id == product_id,
            StockLevel.location_id == location_id
        ).first()
        return level.quantity if level else None

    @staticmethod
    def _quantities(session, location_id, product_ids):
        rows = session.query(StockLevel.product_id, StockLevel.quantity).filter(
            StockLevel.location_id == location_id,
            StockLevel.product_id.in_(product_ids)
        ).all()
        return {row.product_id: row.quantity for row in rows}

    @staticmethod
    def _store(session, product_id, location_id, quantity, note, created_by):
        level = session.query(StockLevel).filter(
            StockLevel.product_id == product_id,
            StockLevel.location_id == location_id
        ).with_for_update().first()
        old_quantity = level.quantity if level else 0
        if level:
            level.quantity = quantity
        else:
            session.add(StockLevel(product_id=product_id, location_id=location_id, quantity=quantity))
        session.add(StockMovement(
            product_id=product_id,
            from_location_id=location_id,
            to_location_id=location_id,
            quantity=quantity - old_quantity,
            type=StockMovementType.ADJUSTMENT,
            note=note,
            created_by=created_by,
        ))
        session.commit()
        return old_quantity

    async def record_movement(self, product_id: str, from_location_id: Optional[str],
                              to_location_id: Optional[str], quantity: int,
                              movement_type: StockMovementType, status: StockMovementStatus,
                              note: Optional[str] = None, created_by: Optional[str] = None,
                              debit: bool = False) -> int:
        return await self._run(self._record, product_id, from_location_id, to_location_id, quantity,
                               movement_type, status, note, created_by, debit)

    async def fetch_movement(self, movement_id: int) -> Optional[Dict[str, Any]]:
        return await self._run(self._movement, movement_id)

    async def settle_movement(self, movement_id: int, quantity: int, status: StockMovementStatus,
                              note: Optional[str] = None,
                              discrepancy: Optional[Dict[str, Any]] = None) -> bool:
        return await self._run(self._settle, movement_id, quantity, status, note, discrepancy)

    @staticmethod
    def _locked_level(session, product_id, location_id):
        level = session.query(StockLevel).filter(
            StockLevel.product_id == product_id,
            StockLevel.location_id == location_id
        ).with_for_update().first()
        if level is None:
            level = StockLevel(product_id=product_id, location_id=location_id, quantity=0)
            session.add(level)
        return level

    @staticmethod
    def _record(session, product_id, from_location_id, to_location_id, quantity,
                movement_type, status, note, created_by, debit):
        if debit:
            level = SqlStockBackend._locked_level(session, product_id, from_location_id)
            available = level.quantity or 0
            if available < quantity:
                session.rollback()
                raise InsufficientStockError(product_id, quantity, available)
            level.quantity = available - quantity
        movement = StockMovement(
            product_id=product_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            quantity=quantity,
            type=movement_type,
            status=status,
            note=note,
            created_by=created_by,
        )
        session.add(movement)
        session.commit()
        return movement.id

    @staticmethod
    def _movement(session, movement_id):
        movement = session.get(StockMovement, movement_id)
        if movement is None:
            return None
        return {
            'id': movement.id,
            'product_id': movement.product_id,
            'from_location_id': movement.from_location_id,
            'to_location_id': movement.to_location_id,
            'quantity': movement.quantity,
            'type': movement.type,
            'status': movement.status,
        }

    @staticmethod
    def _settle(session, movement_id, quantity, status, note, discrepancy):
        movement = session.query(StockMovement).filter(
            StockMovement.id == movement_id
        ).with_for_update().first()
        if movement is None or movement.status is not StockMovementStatus.PENDING:
            session.rollback()
            return False
        level = SqlStockBackend._locked_level(session, movement.product_id, movement.to_location_id)
        level.quantity = (level.quantity or 0) + quantity
        movement.quantity = quantity
        movement.status = status
        if note is not None:
            movement.note = note
        if discrepancy is not None:
            session.add(StockDiscrepancy(movement_id=movement.id, **discrepancy))
        session.commit()
        return True
