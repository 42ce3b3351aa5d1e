from sqlalchemy import event
from sqlalchemy.orm import object_session

from .catalog import Product, ProductUnit
from .inventory import StockMovement
from .sales import Sale, SaleLine, CreditSale, CreditPayment
from .prescriptions import Prescription, PrescriptionItem
from .documents import DocumentSequence

__all__ = [
    'Product', 'ProductUnit',
    'StockMovement',
    'Sale', 'SaleLine', 'CreditSale', 'CreditPayment',
    'Prescription', 'PrescriptionItem',
    'DocumentSequence',
]

# Ledger rows and completed sales are append-only.
_IMMUTABLE_MODELS = (StockMovement, Sale, SaleLine, CreditPayment)


def _reject_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise ValueError(f"{type(target).__name__} records are immutable")


def _reject_delete(mapper, connection, target):
    raise ValueError(f"{type(target).__name__} records cannot be deleted")


for _model in _IMMUTABLE_MODELS:
    event.listen(_model, "before_update", _reject_update)
    event.listen(_model, "before_delete", _reject_delete)
