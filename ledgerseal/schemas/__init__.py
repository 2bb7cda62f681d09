"""
LedgerSeal - Schemas Package

Pydantic schemas for request/response validation.
"""

from ledgerseal.schemas.invoice import (
    InvoiceLineItemCreate,
    InvoiceLineItemResponse,
    InvoiceCreate,
    InvoiceCancelRequest,
    InvoicePaymentRequest,
    InvoiceResponse,
    InvoiceListResponse,
    InvoiceAuditLogResponse,
    InvoiceIdsRequest,
)
from ledgerseal.schemas.credit_note import (
    CreditItemSelection,
    CreditNoteCreate,
    CreditNoteItemResponse,
    CreditNoteResponse,
    CreditNoteListResponse,
)

__all__ = [
    "InvoiceLineItemCreate",
    "InvoiceLineItemResponse",
    "InvoiceCreate",
    "InvoiceCancelRequest",
    "InvoicePaymentRequest",
    "InvoiceResponse",
    "InvoiceListResponse",
    "InvoiceAuditLogResponse",
    "InvoiceIdsRequest",
    "CreditItemSelection",
    "CreditNoteCreate",
    "CreditNoteItemResponse",
    "CreditNoteResponse",
    "CreditNoteListResponse",
]
