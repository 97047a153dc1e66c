from .tenancy import Pharmacy, ActorToken
from .drawers import CashDrawer, CashDrawerSession, CashMovement
from .sales import Sale, SaleLine
from .chifa import ChifaInvoice, ChifaInvoiceLine, Bordereau, ChifaRejection
from .documents import DocumentSequence, LedgerEvent

__all__ = [
    'Pharmacy', 'ActorToken',
    'CashDrawer', 'CashDrawerSession', 'CashMovement',
    'Sale', 'SaleLine',
    'ChifaInvoice', 'ChifaInvoiceLine', 'Bordereau', 'ChifaRejection',
    'DocumentSequence', 'LedgerEvent',
]
