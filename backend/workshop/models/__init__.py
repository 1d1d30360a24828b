from .auth import User
from .inventory import Category, InventoryItem, StockMovement, ShopUsage
from .catalog import ServiceCategory, Service
from .customers import Customer, Vehicle
from .jobs import JobCard, JobService, JobPart, JobManualEntry
from .billing import Invoice, Payment
from .pos import PosSale, PosSaleItem
from .documents import DocumentSequence
from .settings import Setting

__all__ = [
    'User',
    'Category', 'InventoryItem', 'StockMovement', 'ShopUsage',
    'ServiceCategory', 'Service',
    'Customer', 'Vehicle',
    'JobCard', 'JobService', 'JobPart', 'JobManualEntry',
    'Invoice', 'Payment',
    'PosSale', 'PosSaleItem',
    'DocumentSequence',
    'Setting',
]
