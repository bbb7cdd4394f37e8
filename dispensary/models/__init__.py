"""Models package - cart snapshots and SQLAlchemy tables."""
# Cart Models
from dispensary.models.product import Product, BulkPrice
from dispensary.models.cart_line import CartLine
from dispensary.models.customer import Customer

# Store Models
from dispensary.models.stock_location import StockLocation
from dispensary.models.stock_level import StockLevel
from dispensary.models.stock_movement import StockMovement, StockMovementType, StockMovementStatus
from dispensary.models.stock_discrepancy import StockDiscrepancy
from dispensary.models.customer_price import CustomerPrice

__all__ = [
    # Cart
    'Product', 'BulkPrice', 'CartLine', 'Customer',
    # Store
    'StockLocation', 'StockLevel', 'StockMovement', 'StockMovementType', 'StockMovementStatus',
    'StockDiscrepancy', 'CustomerPrice',
]
