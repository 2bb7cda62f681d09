"""
LedgerSeal - Invoice Schemas

Pydantic schemas for invoices and their audit entries.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ledgerseal.models.audit import AuditAction
from ledgerseal.models.invoice import InvoiceStatus


# ===========================================
# LINE ITEM SCHEMAS
# ===========================================

class InvoiceLineItemCreate(BaseModel):
    """Schema for creating an invoice line item."""
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0, description="Quantity of items")
    unit_price: Decimal = Field(..., ge=0, description="Price per unit, excluding tax")
    tax_rate: Decimal = Field(Decimal("20.00"), ge=0, le=100, description="VAT rate percentage")


class InvoiceLineItemResponse(BaseModel):
    """Schema for invoice line item response."""
    id: UUID
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    position: int

    class Config:
        from_attributes = True


# ===========================================
# INVOICE SCHEMAS
# ===========================================

class InvoiceCreate(BaseModel):
    """Schema for creating a draft invoice."""
    client_id: UUID
    issue_date: date
    due_date: Optional[date] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    line_items: List[InvoiceLineItemCreate] = Field(..., min_length=1)

    # Mandatory mentions
    payment_conditions: Optional[str] = None
    late_payment_penalty_rate: Optional[Decimal] = Field(None, ge=0)
    recovery_indemnity: Optional[Decimal] = Field(None, ge=0)
    early_payment_discount: Optional[str] = Field(None, max_length=255)
    purchase_order_number: Optional[str] = Field(None, max_length=100)
    contract_reference: Optional[str] = Field(None, max_length=100)
    electronic_format: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = None


class InvoiceCancelRequest(BaseModel):
    """Schema for cancelling a sent invoice."""
    reason: str = Field(..., min_length=1, max_length=255)


class InvoicePaymentRequest(BaseModel):
    paid_at: Optional[datetime] = None


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""
    id: UUID
    tenant_id: UUID
    client_id: UUID
    invoice_number: str
    sequence_number: Optional[int] = None
    issue_date: date
    due_date: Optional[date] = None
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    currency: str
    status: InvoiceStatus

    hash: Optional[str] = None
    previous_hash: Optional[str] = None
    hash_version: Optional[int] = None
    signature: Optional[str] = None
    document_hash: Optional[str] = None

    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    payment_conditions: Optional[str] = None
    late_payment_penalty_rate: Optional[Decimal] = None
    recovery_indemnity: Optional[Decimal] = None
    early_payment_discount: Optional[str] = None
    purchase_order_number: Optional[str] = None
    contract_reference: Optional[str] = None
    electronic_format: Optional[str] = None
    notes: Optional[str] = None

    items: List[InvoiceLineItemResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InvoiceListResponse(BaseModel):
    invoices: List[InvoiceResponse]
    total: int


# ===========================================
# AUDIT SCHEMAS
# ===========================================

class InvoiceAuditLogResponse(BaseModel):
    """Schema for one signed audit entry."""
    id: UUID
    invoice_id: UUID
    action: AuditAction
    signature: str
    timestamp: datetime
    user_id: Optional[UUID] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    changes: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class InvoiceIdsRequest(BaseModel):
    """Schema for batch operations over several invoices."""
    invoice_ids: List[UUID] = Field(..., min_length=1)
