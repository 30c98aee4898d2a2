from .catalog import Branch, Product, Supplier
from .inventory import StockMovement, BranchStock
from .sales import Sale, SaleItem, Payment, HeldSale
from .shifts import Shift
from .purchases import PurchaseInvoice, PurchaseItem
from .settings import Setting
from .audit import AuditLogEntry

__all__ = [
    'Branch', 'Product', 'Supplier',
    'StockMovement', 'BranchStock',
    'Sale', 'SaleItem', 'Payment', 'HeldSale',
    'Shift',
    'PurchaseInvoice', 'PurchaseItem',
    'Setting',
    'AuditLogEntry',
]
