from .catalog import Category, Supplier, Product, Customer
from .inventory import StockMovement
from .caisse import CaisseSession, CashMovement
from .sales import Sale, SaleItem, SaleRefund, SaleRefundLine, DocumentSequence

__all__ = [
    'Category', 'Supplier', 'Product', 'Customer',
    'StockMovement',
    'CaisseSession', 'CashMovement',
    'Sale', 'SaleItem', 'SaleRefund', 'SaleRefundLine', 'DocumentSequence',
]
