from .auth import User, SessionToken, LoginLog
from .activity import ActivityLog
from .invoices import Invoice, InvoiceLine, InvoicePayment, SequenceCounter

__all__ = [
    'User', 'SessionToken', 'LoginLog',
    'ActivityLog',
    'Invoice', 'InvoiceLine', 'InvoicePayment', 'SequenceCounter',
]
