from .auth import User, SessionToken
from .security import SecurityEvent
from .inventory import Product, StockMovement
from .sales import Sale, SaleItem, SalePayment

__all__ = [
    'User', 'SessionToken', 'SecurityEvent',
    'Product', 'StockMovement',
    'Sale', 'SaleItem', 'SalePayment',
]
