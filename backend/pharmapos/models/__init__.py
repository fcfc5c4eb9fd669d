from .tenancy import Tenant, Branch
from .inventory import Product, InventoryRecord
from .sales import Sale, SaleItem, Payment

__all__ = [
    'Tenant', 'Branch',
    'Product', 'InventoryRecord',
    'Sale', 'SaleItem', 'Payment',
]
