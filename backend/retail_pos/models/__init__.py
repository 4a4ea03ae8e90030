from .inventory import Product
from .sales import Sale, SaleLine
from .documents import InvoiceSequence
from .audit import ActivityEvent

__all__ = [
    'Product',
    'Sale', 'SaleLine',
    'InvoiceSequence',
    'ActivityEvent',
]
