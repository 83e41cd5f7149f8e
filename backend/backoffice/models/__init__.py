from .tenancy import Company
from .catalog import Category, Unit, Product
from .inventory import StockMovement
from .customers import Customer, Supplier
from .sales import Sale, SaleItem, PaymentRecord
from .purchases import Purchase, PurchaseItem

__all__ = [
    'Company',
    'Category', 'Unit', 'Product',
    'StockMovement',
    'Customer', 'Supplier',
    'Sale', 'SaleItem', 'PaymentRecord',
    'Purchase', 'PurchaseItem',
]
