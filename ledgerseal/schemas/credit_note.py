"""
LedgerSeal - Credit Note Schemas
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ledgerseal.models.credit_note import CreditNoteStatus


class CreditItemSelection(BaseModel):
    """An invoice line to credit; quantity defaults to the whole line."""
    item_id: UUID
    quantity: Optional[Decimal] = Field(None, gt=0)


class CreditNoteCreate(BaseModel):
    """Schema for creating a credit note against a sent invoice."""
    invoice_id: UUID
    reason: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    credit_note_date: Optional[date] = None
    full_credit: bool = False
    selected_items: Optional[List[CreditItemSelection]] = None

    @model_validator(mode="after")
    def check_selection(self):
        if not self.full_credit and not self.selected_items:
            raise ValueError("Either full_credit or selected_items is required")
        return self


class CreditNoteItemResponse(BaseModel):
    id: UUID
    invoice_item_id: Optional[UUID] = None
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


class CreditNoteResponse(BaseModel):
    """Schema for credit note response."""
    id: UUID
    tenant_id: UUID
    client_id: UUID
    invoice_id: UUID
    credit_note_number: str
    sequence_number: int
    credit_note_date: date
    reason: str
    description: Optional[str] = None
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    currency: str
    status: CreditNoteStatus
    hash: str
    previous_hash: Optional[str] = None
    hash_version: int
    signature: Optional[str] = None
    issued_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    items: List[CreditNoteItemResponse] = []
    created_at: datetime

    class Config:
        from_attributes = True


class CreditNoteListResponse(BaseModel):
    credit_notes: List[CreditNoteResponse]
    total_credited: Decimal
    remaining: Decimal
