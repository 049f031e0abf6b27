from .tenancy import Tenant, Branch
from .auth import User
from .catalog import Product, ProductVariant
from .stock import StockRecord, StockAdjustment, StockAlert, StockTransfer
from .sales import Transaction, TransactionItem
from .returns import Return, ReturnItem, ExchangeItem, CashMovement
from .documents import DocumentSequence, AuditLog

__all__ = [
    'Tenant', 'Branch', 'User',
    'Product', 'ProductVariant',
    'StockRecord', 'StockAdjustment', 'StockAlert', 'StockTransfer',
    'Transaction', 'TransactionItem',
    'Return', 'ReturnItem', 'ExchangeItem', 'CashMovement',
    'DocumentSequence', 'AuditLog',
]
