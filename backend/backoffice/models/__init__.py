from .auth import User
from .inventory import Product, StockMovement, Batch
from .sales import Sale, SaleItem
from .pricing import PriceHistory

__all__ = [
    'User',
    'Product', 'StockMovement', 'Batch',
    'Sale', 'SaleItem',
    'PriceHistory',
]
