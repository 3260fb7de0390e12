from .auth import User, SessionToken
from .catalog import Product, BranchPriceOverride
from .branches import Branch, BranchStock, BranchProductPrice
from .orders import Order, OrderItem
from .stock import StockRequest, StockRequestItem, StockMovement

__all__ = [
    'User', 'SessionToken',
    'Product', 'BranchPriceOverride',
    'Branch', 'BranchStock', 'BranchProductPrice',
    'Order', 'OrderItem',
    'StockRequest', 'StockRequestItem', 'StockMovement',
]
