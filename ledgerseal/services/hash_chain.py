"""
Sequence and Hash Chain Service
Gapless per-tenant numbering and SHA-256 chaining of finalized documents

Each invoice (and, separately, each credit note) of a tenant gets the next
sequence number and a hash over its canonical fields plus the hash of the
document before it. Altering any historical document breaks the chain at
that point, which ComplianceValidator detects.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Type, Union
from uuid import UUID
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.config import settings
from ledgerseal.models.credit_note import CreditNote
from ledgerseal.models.invoice import Invoice
from ledgerseal.models.sequence import DocumentFamily, DocumentSequence

logger = logging.getLogger(__name__)

# Bump when the canonical field list changes; stored per document.
HASH_VERSION = 1

ChainedDocument = Union[Invoice, CreditNote]


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, UUID):
            return str(obj)
        return super().default(obj)


@dataclass(frozen=True)
class FamilyColumns:
    model: Type[ChainedDocument]
    number_attr: str
    date_attr: str


FAMILIES: Dict[DocumentFamily, FamilyColumns] = {
    DocumentFamily.INVOICE: FamilyColumns(Invoice, "invoice_number", "issue_date"),
    DocumentFamily.CREDIT_NOTE: FamilyColumns(CreditNote, "credit_note_number", "credit_note_date"),
}


@dataclass(frozen=True)
class ChainAssignment:
    """Numbering and chaining values given to a document."""
    sequence_number: int
    number: str
    previous_hash: Optional[str]
    hash: str
    hash_version: int


def _amount(value: Any) -> str:
    return str(Decimal(str(value or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def canonical_payload(family: DocumentFamily, document: ChainedDocument, version: int = HASH_VERSION) -> Dict[str, Any]:
    """
    The exact fields a document hash covers.

    Mutable timestamps and the hash itself are never part of it.
    """
    if version != 1:
        raise ValueError(f"Unsupported hash version: {version}")

    columns = FAMILIES[family]
    document_date = getattr(document, columns.date_attr)
    payload = {
        "family": family.value,
        "hash_version": version,
        "tenant_id": str(document.tenant_id),
        "client_id": str(document.client_id),
        "number": getattr(document, columns.number_attr),
        "sequence_number": document.sequence_number,
        "date": document_date.isoformat() if document_date else None,
        "subtotal": _amount(document.subtotal),
        "tax_amount": _amount(document.tax_amount),
        "total": _amount(document.total),
        "currency": document.currency,
        "previous_hash": document.previous_hash,
    }
    if family == DocumentFamily.CREDIT_NOTE:
        payload["invoice_id"] = str(document.invoice_id)
    return payload


def compute_hash(family: DocumentFamily, document: ChainedDocument) -> str:
    """Recompute a document's hash from its stored fields."""
    version = document.hash_version or HASH_VERSION
    data = canonical_payload(family, document, version)
    hash_input = json.dumps(data, sort_keys=True, separators=(",", ":"), cls=DecimalEncoder)
    return hashlib.sha256(hash_input.encode()).hexdigest()


def format_document_number(family: DocumentFamily, document_date: date, sequence_number: int) -> str:
    prefix = {
        DocumentFamily.INVOICE: settings.invoice_number_prefix,
        DocumentFamily.CREDIT_NOTE: settings.credit_note_number_prefix,
    }[family]
    return f"{prefix}-{document_date.year}-{sequence_number:06d}"


class SequenceAndHashChain:
    """
    Assigns sequence numbers and chained hashes.

    Must run inside the caller's unit of work: the counter row lock is held
    until that transaction commits or rolls back, so a rolled-back document
    never consumes a number.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def assign(
        self,
        tenant_id: UUID,
        family: DocumentFamily,
        document: ChainedDocument,
    ) -> ChainAssignment:
        """Give the document its sequence number, final number, previous_hash and hash."""
        columns = FAMILIES[family]
        model = columns.model

        counter = await self._lock_counter(tenant_id, family)

        last_sequence = await self.db.scalar(
            select(func.max(model.sequence_number)).where(model.tenant_id == tenant_id)
        )
        sequence_number = (last_sequence or 0) + 1

        previous_hash = None
        if sequence_number > 1:
            previous_hash = await self.db.scalar(
                select(model.hash).where(
                    model.tenant_id == tenant_id,
                    model.sequence_number == sequence_number - 1,
                )
            )

        document_date = getattr(document, columns.date_attr)
        number = format_document_number(family, document_date, sequence_number)

        document.sequence_number = sequence_number
        setattr(document, columns.number_attr, number)
        document.previous_hash = previous_hash
        document.hash_version = HASH_VERSION
        document.hash = compute_hash(family, document)

        counter.last_sequence = sequence_number

        logger.debug(f"Assigned {family.value} #{sequence_number} ({number}) for tenant {tenant_id}")

        return ChainAssignment(
            sequence_number=sequence_number,
            number=number,
            previous_hash=previous_hash,
            hash=document.hash,
            hash_version=HASH_VERSION,
        )

    async def _lock_counter(self, tenant_id: UUID, family: DocumentFamily) -> DocumentSequence:
        """SELECT ... FOR UPDATE on the family counter, creating it on first use."""
        counter = await self.db.scalar(
            select(DocumentSequence)
            .where(
                DocumentSequence.tenant_id == tenant_id,
                DocumentSequence.family == family,
            )
            .with_for_update()
        )
        if counter is None:
            counter = DocumentSequence(tenant_id=tenant_id, family=family, last_sequence=0)
            self.db.add(counter)
            await self.db.flush()
        return counter

    async def get_chain(
        self,
        tenant_id: UUID,
        family: DocumentFamily = DocumentFamily.INVOICE,
        year: Optional[int] = None,
    ) -> List[ChainedDocument]:
        """Finalized documents of a family in sequence order."""
        columns = FAMILIES[family]
        model = columns.model
        query = (
            select(model)
            .where(model.tenant_id == tenant_id, model.sequence_number.is_not(None))
            .order_by(model.sequence_number)
        )
        if year is not None:
            date_column = getattr(model, columns.date_attr)
            query = query.where(date_column >= date(year, 1, 1), date_column <= date(year, 12, 31))

        result = await self.db.execute(query)
        return list(result.scalars().all())
