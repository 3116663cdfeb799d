# billing/models/__init__.py
from .client import Client, DebtAdjustment, DebtAdjustmentType
from .product import Product
from .order import Order, OrderItem, OrderStatus
from .invoice import Invoice, InvoiceItem, InvoiceStatus, Payment, PaymentMethod
