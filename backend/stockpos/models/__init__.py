from .tenancy import Store
from .inventory import Product, StockLot, StockAuditLog
from .sales import Sale, SaleLine, Payment

__all__ = [
    'Store',
    'Product', 'StockLot', 'StockAuditLog',
    'Sale', 'SaleLine', 'Payment',
]
