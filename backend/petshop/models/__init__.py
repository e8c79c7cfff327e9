from .tenancy import Company, Store
from .auth import User, SessionToken
from .customers import Customer, Pet
from .catalog import Supplier, Product, Service, ServiceConsumedItem
from .inventory import InventoryReservation, StockMovement
from .appointments import Appointment, AppointmentServiceLine
from .financial import Transaction, TransactionLine, Invoice, InvoiceLine, CreditNote
from .documents import DocumentSequence, AuditEvent

__all__ = [
    'Company', 'Store',
    'User', 'SessionToken',
    'Customer', 'Pet',
    'Supplier', 'Product', 'Service', 'ServiceConsumedItem',
    'InventoryReservation', 'StockMovement',
    'Appointment', 'AppointmentServiceLine',
    'Transaction', 'TransactionLine', 'Invoice', 'InvoiceLine', 'CreditNote',
    'DocumentSequence', 'AuditEvent',
]
