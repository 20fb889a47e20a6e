from .catalog import Product, InventoryLocation, PRODUCT_STATUSES
from .inventory import InventoryRecord, InventoryTransaction, AppendOnlyViolation, LEDGER_TYPES
from .orders import Order, OrderLine, OrderStatusHistory
from .documents import DocumentSequence

__all__ = [
    'Product', 'InventoryLocation', 'PRODUCT_STATUSES',
    'InventoryRecord', 'InventoryTransaction', 'AppendOnlyViolation', 'LEDGER_TYPES',
    'Order', 'OrderLine', 'OrderStatusHistory',
    'DocumentSequence',
]
