from .tenancy import Company, Location, User
from .inventory import Item, StockBatch
from .finance import Expense

__all__ = [
    'Company', 'Location', 'User',
    'Item', 'StockBatch',
    'Expense',
]
