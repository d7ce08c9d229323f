from .inventory import Product, ExpirationBatch, StockMovement
from .sales import Sale, SaleLine
from .cash import CashChannel, CashTransaction

__all__ = [
    'Product', 'ExpirationBatch', 'StockMovement',
    'Sale', 'SaleLine',
    'CashChannel', 'CashTransaction',
]
