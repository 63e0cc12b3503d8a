from .business import Business
from .customer import Customer
from .service import Service
from .order import Order
from .order_item import OrderItem
from .e_invoice_settings import EInvoiceSettings
from .e_invoice import EInvoice
from .e_invoice_item import EInvoiceItem
from .e_invoice_log import EInvoiceLog

__all__ = [
    "Business",
    "Customer",
    "Service",
    "Order",
    "OrderItem",
    "EInvoiceSettings",
    "EInvoice",
    "EInvoiceItem",
    "EInvoiceLog",
]
