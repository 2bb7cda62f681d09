"""
LedgerSeal - Credit Note Models

A credit note (avoir) reverses all or part of a finalized invoice. It gets
its own gapless number series and hash chain at creation time.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Date, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text,
    UniqueConstraint, Uuid, event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledgerseal.models.base import BaseModel
from ledgerseal.models.invoice import changed_fields, original_value, stored_parent_hash
from ledgerseal.utils.error_handling import ImmutableRecordException

if TYPE_CHECKING:
    from ledgerseal.models.tenant import Client


class CreditNoteStatus(str, Enum):
    """Credit note lifecycle: draft -> issued -> applied."""
    DRAFT = "draft"
    ISSUED = "issued"
    APPLIED = "applied"


# Statuses whose totals count against the invoice
COUNTED_CREDIT_NOTE_STATUSES = (CreditNoteStatus.ISSUED, CreditNoteStatus.APPLIED)

CREDIT_NOTE_SEALED_FIELDS = (
    "tenant_id",
    "client_id",
    "invoice_id",
    "credit_note_number",
    "sequence_number",
    "credit_note_date",
    "subtotal",
    "tax_amount",
    "total",
    "currency",
    "hash",
    "previous_hash",
    "hash_version",
    "signature",
)


class CreditNote(BaseModel):
    """Credit note against a single invoice."""

    __tablename__ = "credit_notes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "credit_note_number", name="uq_credit_notes_tenant_number"),
        UniqueConstraint("tenant_id", "sequence_number", name="uq_credit_notes_tenant_sequence"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    credit_note_number: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    credit_note_date: Mapped[date] = mapped_column(Date, nullable=False)

    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)

    status: Mapped[CreditNoteStatus] = mapped_column(
        SQLEnum(CreditNoteStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=CreditNoteStatus.DRAFT,
        nullable=False,
        index=True,
    )

    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    hash_version: Mapped[int] = mapped_column(Integer, nullable=False)
    signature: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    client: Mapped["Client"] = relationship("Client", lazy="selectin")
    items: Mapped[List["CreditNoteItem"]] = relationship(
        "CreditNoteItem",
        back_populates="credit_note",
        cascade="all, delete-orphan",
        order_by="CreditNoteItem.position",
        lazy="selectin",
    )

    @property
    def number(self) -> str:
        return self.credit_note_number


class CreditNoteItem(BaseModel):
    """Credited line, copied from an invoice item."""

    __tablename__ = "credit_note_items"

    credit_note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("credit_notes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    invoice_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoice_items.id", ondelete="SET NULL"),
        nullable=True,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    credit_note: Mapped["CreditNote"] = relationship("CreditNote", back_populates="items")


CREDIT_NOTE_ITEM_FIELDS = (
    "credit_note_id",
    "invoice_item_id",
    "description",
    "quantity",
    "unit_price",
    "tax_rate",
    "subtotal",
    "tax_amount",
    "total",
    "position",
)


@event.listens_for(CreditNote, "before_update")
def _guard_sealed_credit_note(mapper, connection, target: CreditNote) -> None:
    if original_value(target, "hash") is None:
        return
    changed = changed_fields(target, CREDIT_NOTE_SEALED_FIELDS)
    if changed:
        raise ImmutableRecordException("CreditNote", target.id, changed)


@event.listens_for(CreditNote, "before_delete")
def _guard_credit_note_delete(mapper, connection, target: CreditNote) -> None:
    raise ImmutableRecordException("CreditNote", target.id)


@event.listens_for(CreditNoteItem, "before_update")
def _guard_sealed_credit_note_item(mapper, connection, target: CreditNoteItem) -> None:
    parent_hash = stored_parent_hash(connection, CreditNote.__table__, original_value(target, "credit_note_id"))
    if parent_hash is not None:
        raise ImmutableRecordException("CreditNoteItem", target.id, changed_fields(target, CREDIT_NOTE_ITEM_FIELDS))


@event.listens_for(CreditNoteItem, "before_delete")
def _guard_credit_note_item_delete(mapper, connection, target: CreditNoteItem) -> None:
    parent_hash = stored_parent_hash(connection, CreditNote.__table__, original_value(target, "credit_note_id"))
    if parent_hash is not None:
        raise ImmutableRecordException("CreditNoteItem", target.id)
