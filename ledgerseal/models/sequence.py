"""
LedgerSeal - Document Sequence Model

One counter row per (tenant, document family). Locking this row is what
serializes concurrent number assignment.
"""

import uuid
from enum import Enum

from sqlalchemy import Enum as SQLEnum, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ledgerseal.models.base import BaseModel


class DocumentFamily(str, Enum):
    """Independent numbering series."""
    INVOICE = "invoice"
    CREDIT_NOTE = "credit_note"


class DocumentSequence(BaseModel):
    """Last sequence number handed out for a tenant's document family."""

    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint("tenant_id", "family", name="uq_document_sequences_tenant_family"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    family: Mapped[DocumentFamily] = mapped_column(
        SQLEnum(DocumentFamily, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    last_sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
