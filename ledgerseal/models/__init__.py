"""
LedgerSeal - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from ledgerseal.models.base import BaseModel, TimestampMixin
from ledgerseal.models.tenant import Tenant, Client
from ledgerseal.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from ledgerseal.models.credit_note import (
    CreditNote,
    CreditNoteItem,
    CreditNoteStatus,
    COUNTED_CREDIT_NOTE_STATUSES,
)
from ledgerseal.models.audit import InvoiceAuditLog, AuditAction
from ledgerseal.models.sequence import DocumentSequence, DocumentFamily

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "Tenant",
    "Client",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "CreditNote",
    "CreditNoteItem",
    "CreditNoteStatus",
    "COUNTED_CREDIT_NOTE_STATUSES",
    "InvoiceAuditLog",
    "AuditAction",
    "DocumentSequence",
    "DocumentFamily",
]
