"""
LedgerSeal - Invoice Audit Log Model

Append-only trail of every invoice state change. Rows are signed at insert
and the ORM refuses to update or delete them.
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Index, String, Text, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column

from ledgerseal.database import Base
from ledgerseal.models.base import JSONType
from ledgerseal.utils.error_handling import ImmutableRecordException


class AuditAction(str, enum.Enum):
    """Invoice audit action types."""
    CREATED = "created"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"
    MODIFIED = "modified"


class InvoiceAuditLog(Base):
    """
    Immutable audit log entry for an invoice.

    No updated_at column: entries are written once and never touched again.
    """

    __tablename__ = "invoice_audit_logs"
    __table_args__ = (
        Index("ix_invoice_audit_logs_invoice_timestamp", "invoice_id", "timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    signature: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Actor
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    changes: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<InvoiceAuditLog(id={self.id}, action={self.action}, invoice_id={self.invoice_id})>"


@event.listens_for(InvoiceAuditLog, "before_update")
def _block_audit_update(mapper, connection, target: InvoiceAuditLog) -> None:
    raise ImmutableRecordException("InvoiceAuditLog", target.id)


@event.listens_for(InvoiceAuditLog, "before_delete")
def _block_audit_delete(mapper, connection, target: InvoiceAuditLog) -> None:
    raise ImmutableRecordException("InvoiceAuditLog", target.id)
