from .people import Person
from .catalog import Product, ProductBarcode
from .ledger import Transaction, TransactionItem, Payment, PaymentAllocation
from .purchasing import Purchase, PurchaseItem
from .audit import AuditLog

__all__ = [
    'Person',
    'Product', 'ProductBarcode',
    'Transaction', 'TransactionItem', 'Payment', 'PaymentAllocation',
    'Purchase', 'PurchaseItem',
    'AuditLog',
]
