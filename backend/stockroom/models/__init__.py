from .inventory import Product, StockMovement
from .sales import Sale, SaleItem
from .customers import Customer

__all__ = [
    'Product', 'StockMovement',
    'Sale', 'SaleItem',
    'Customer',
]
