"""
LedgerSeal - Invoice Models

Invoices and their line items. An invoice is freely editable while in draft;
once sent it carries a gapless sequence number and a chained hash, and the
fields covered by that hash can no longer change.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Date, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text,
    UniqueConstraint, Uuid, event, inspect, select,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledgerseal.models.base import BaseModel
from ledgerseal.utils.error_handling import ImmutableRecordException

if TYPE_CHECKING:
    from ledgerseal.models.tenant import Client


class InvoiceStatus(str, Enum):
    """Invoice lifecycle: draft -> sent -> {paid, cancelled}."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


# Columns that may not change once the document hash is set
INVOICE_SEALED_FIELDS = (
    "tenant_id",
    "client_id",
    "invoice_number",
    "sequence_number",
    "issue_date",
    "subtotal",
    "tax_amount",
    "total",
    "currency",
    "hash",
    "previous_hash",
    "hash_version",
    "signature",
    "document_hash",
)


class Invoice(BaseModel):
    """Invoice issued by a tenant to one of its clients."""

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        UniqueConstraint("tenant_id", "sequence_number", name="uq_invoices_tenant_sequence"),
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
        index=True,
    )

    # Numbering (temporary DRAFT-xxxx number until sent)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Dates
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Amounts
    subtotal: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Integrity
    hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    hash_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    signature: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    document_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Lifecycle timestamps
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Mandatory mentions
    payment_conditions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    late_payment_penalty_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    recovery_indemnity: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    early_payment_discount: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    purchase_order_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    contract_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    electronic_format: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    client: Mapped["Client"] = relationship("Client", lazy="selectin")
    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
        lazy="selectin",
    )

    @property
    def is_draft(self) -> bool:
        return self.status == InvoiceStatus.DRAFT

    @property
    def is_finalized(self) -> bool:
        return self.hash is not None


class InvoiceItem(BaseModel):
    """Line item on an invoice."""

    __tablename__ = "invoice_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("20.00"), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")


INVOICE_ITEM_FIELDS = (
    "invoice_id",
    "description",
    "quantity",
    "unit_price",
    "tax_rate",
    "subtotal",
    "tax_amount",
    "total",
    "position",
)


def original_value(target, attribute: str):
    """Value an attribute had when it was loaded, ignoring pending changes."""
    history = inspect(target).attrs[attribute].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


def changed_fields(target, fields) -> List[str]:
    state = inspect(target)
    return [name for name in fields if state.attrs[name].history.has_changes()]


@event.listens_for(Invoice, "before_update")
def _guard_sealed_invoice(mapper, connection, target: Invoice) -> None:
    if original_value(target, "hash") is None:
        return
    changed = changed_fields(target, INVOICE_SEALED_FIELDS)
    if changed:
        raise ImmutableRecordException("Invoice", target.id, changed)


@event.listens_for(Invoice, "before_delete")
def _guard_invoice_delete(mapper, connection, target: Invoice) -> None:
    if original_value(target, "hash") is not None:
        raise ImmutableRecordException("Invoice", target.id)


def stored_parent_hash(connection, parent_table, parent_id) -> Optional[str]:
    """Hash of the parent document as stored, read on the flush connection."""
    if parent_id is None:
        return None
    return connection.execute(
        select(parent_table.c.hash).where(parent_table.c.id == parent_id)
    ).scalar()


@event.listens_for(InvoiceItem, "before_update")
def _guard_sealed_invoice_item(mapper, connection, target: InvoiceItem) -> None:
    # Items of a sent invoice are covered by its totals and never rewritten
    if stored_parent_hash(connection, Invoice.__table__, original_value(target, "invoice_id")) is not None:
        raise ImmutableRecordException("InvoiceItem", target.id, changed_fields(target, INVOICE_ITEM_FIELDS))


@event.listens_for(InvoiceItem, "before_delete")
def _guard_invoice_item_delete(mapper, connection, target: InvoiceItem) -> None:
    if stored_parent_hash(connection, Invoice.__table__, original_value(target, "invoice_id")) is not None:
        raise ImmutableRecordException("InvoiceItem", target.id)
