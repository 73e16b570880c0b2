from .auth import User, SessionToken
from .catalog import Category, Product
from .inventory import InventoryLog
from .sales import Transaction, TransactionItem
from .notifications import Notification

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product',
    'InventoryLog',
    'Transaction', 'TransactionItem',
    'Notification',
]
