"""
LedgerSeal - Invoice Audit Trail Service

Append-only, signed audit entries for invoice state changes.
"""

import hashlib
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.context import ActorContext
from ledgerseal.models.audit import AuditAction, InvoiceAuditLog
from ledgerseal.models.invoice import Invoice
from ledgerseal.services.hash_chain import DecimalEncoder

logger = logging.getLogger(__name__)


def normalize_changes(changes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Round-trip through JSON so the stored value is exactly what was signed."""
    return json.loads(json.dumps(changes or {}, cls=DecimalEncoder))


def naive_utc(value: datetime) -> datetime:
    """Databases without tz support hand back naive UTC; compare in that form."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def canonical_timestamp(value: datetime) -> str:
    """Second-precision naive UTC ISO string covered by the signature."""
    return naive_utc(value).replace(microsecond=0).isoformat()


def compute_signature(
    invoice_id: uuid.UUID,
    action: AuditAction,
    changes: Dict[str, Any],
    timestamp: datetime,
) -> str:
    data = {
        "invoice_id": str(invoice_id),
        "action": action.value,
        "changes": changes,
        "timestamp": canonical_timestamp(timestamp),
    }
    return hashlib.sha256(
        json.dumps(data, sort_keys=True, separators=(",", ":")).encode()
    ).hexdigest()


class AuditTrailRecorder:
    """
    Writes invoice audit entries inside the caller's transaction.

    The recorder flushes but never commits: if the surrounding unit of work
    rolls back, the entry disappears with the change it documented.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        invoice: Invoice,
        action: AuditAction,
        actor: ActorContext,
        changes: Optional[Dict[str, Any]] = None,
    ) -> InvoiceAuditLog:
        """
        Append a signed audit entry for an invoice.

        Args:
            invoice: The invoice the action applies to
            action: created / sent / paid / cancelled / modified
            actor: Who performed the action and from where
            changes: Free-form description of what changed

        Returns:
            The flushed InvoiceAuditLog row
        """
        timestamp = datetime.now(timezone.utc)
        normalized = normalize_changes(changes)

        entry = InvoiceAuditLog(
            invoice_id=invoice.id,
            tenant_id=invoice.tenant_id,
            action=action,
            signature=compute_signature(invoice.id, action, normalized, timestamp),
            timestamp=timestamp,
            user_id=actor.user_id,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            changes=normalized,
        )
        self.db.add(entry)
        await self.db.flush()

        logger.info(f"Audit: invoice {invoice.invoice_number} {action.value} by {actor.user_id or 'system'}")
        return entry

    @staticmethod
    def verify(entry: InvoiceAuditLog) -> bool:
        """Recompute the signature of a stored entry."""
        expected = compute_signature(entry.invoice_id, entry.action, entry.changes or {}, entry.timestamp)
        return expected == entry.signature

    async def list_for_invoice(self, invoice_id: uuid.UUID) -> List[InvoiceAuditLog]:
        """Audit entries of one invoice, oldest first."""
        return await self.list_for_invoices([invoice_id])

    async def list_for_invoices(self, invoice_ids: Sequence[uuid.UUID]) -> List[InvoiceAuditLog]:
        """Audit entries of several invoices, ordered by timestamp then id."""
        if not invoice_ids:
            return []
        result = await self.db.execute(
            select(InvoiceAuditLog)
            .where(InvoiceAuditLog.invoice_id.in_(list(invoice_ids)))
            .order_by(InvoiceAuditLog.timestamp, InvoiceAuditLog.id)
        )
        return list(result.scalars().all())
