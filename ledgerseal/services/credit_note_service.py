"""
LedgerSeal - Credit Note Workflow

Full and partial credit notes against finalized invoices, their issue/apply
transitions, and invoice cancellation (a full credit note issued and the
invoice closed in one step).

Business rules:
- Draft invoices cannot be credited or cancelled
- The sum of issued/applied credit notes never exceeds the invoice total
- Cancellation is terminal and happens at most once per invoice
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.context import ActorContext
from ledgerseal.database import UnitOfWork
from ledgerseal.models.audit import AuditAction
from ledgerseal.models.credit_note import (
    COUNTED_CREDIT_NOTE_STATUSES,
    CreditNote,
    CreditNoteItem,
    CreditNoteStatus,
)
from ledgerseal.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from ledgerseal.models.sequence import DocumentFamily
from ledgerseal.services.audit_trail import AuditTrailRecorder
from ledgerseal.services.hash_chain import SequenceAndHashChain
from ledgerseal.services.invoice_service import InvoiceService, calculate_line_totals, quantize
from ledgerseal.services.signing import DocumentSigner, get_document_signer
from ledgerseal.utils.error_handling import (
    CreditAmountExceededException,
    CreditNoteNotFoundException,
    DraftInvoiceException,
    InvalidStatusTransitionException,
    InvoiceAlreadyCancelledException,
    InvoiceFullyCreditedException,
    InvoiceNotCancellableException,
    ValidationException,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditSelection:
    """An invoice line to credit; quantity defaults to the full line quantity."""
    item_id: uuid.UUID
    quantity: Optional[Decimal] = None


@dataclass
class _CreditLine:
    source: InvoiceItem
    quantity: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


class CreditNoteWorkflow:
    """Service for credit note operations."""

    def __init__(self, db: AsyncSession, signer: Optional[DocumentSigner] = None):
        self.db = db
        self.signer = signer or get_document_signer()
        self.chain = SequenceAndHashChain(db)
        self.audit = AuditTrailRecorder(db)
        self.invoices = InvoiceService(db, signer=self.signer)

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_credit_note(self, credit_note_id: uuid.UUID, tenant_id: uuid.UUID) -> CreditNote:
        credit_note = await self.db.scalar(
            select(CreditNote).where(CreditNote.id == credit_note_id, CreditNote.tenant_id == tenant_id)
        )
        if credit_note is None:
            raise CreditNoteNotFoundException(credit_note_id)
        return credit_note

    async def list_credit_notes_for_invoice(self, invoice_id: uuid.UUID, tenant_id: uuid.UUID) -> List[CreditNote]:
        result = await self.db.execute(
            select(CreditNote)
            .where(CreditNote.invoice_id == invoice_id, CreditNote.tenant_id == tenant_id)
            .order_by(CreditNote.sequence_number)
        )
        return list(result.scalars().all())

    async def get_total_credited(
        self,
        invoice_id: uuid.UUID,
        exclude_credit_note_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """Sum of issued and applied credit notes of an invoice."""
        query = select(func.coalesce(func.sum(CreditNote.total), 0)).where(
            CreditNote.invoice_id == invoice_id,
            CreditNote.status.in_(COUNTED_CREDIT_NOTE_STATUSES),
        )
        if exclude_credit_note_id is not None:
            query = query.where(CreditNote.id != exclude_credit_note_id)
        credited = await self.db.scalar(query)
        return quantize(Decimal(str(credited or 0)))

    async def validate_credit_amount(
        self,
        invoice: Invoice,
        amount: Decimal,
        exclude_credit_note_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        """
        Check a credit amount against what remains creditable.

        Returns the remaining amount; raises CreditAmountExceededException
        carrying the requested and remaining amounts when it does not fit.
        """
        credited = await self.get_total_credited(invoice.id, exclude_credit_note_id)
        remaining = quantize(Decimal(str(invoice.total)) - credited)
        requested = quantize(Decimal(str(amount)))
        if requested > remaining:
            raise CreditAmountExceededException(requested, remaining, invoice.currency)
        return remaining

    # ===========================================
    # CREATION
    # ===========================================

    async def create_from_invoice(
        self,
        invoice_id: uuid.UUID,
        actor: ActorContext,
        reason: str,
        selected_items: Optional[Sequence[CreditSelection]] = None,
        full_credit: bool = False,
        description: Optional[str] = None,
        credit_note_date: Optional[date] = None,
    ) -> CreditNote:
        """
        Create a draft credit note from an invoice.

        Full credit copies the invoice totals and every line verbatim.
        Partial credit recomputes each selected line as quantity x unit price
        plus tax at the line rate.
        """
        async with UnitOfWork(self.db):
            invoice = await self.invoices.get_invoice_for_update(invoice_id, actor.tenant_id)
            credit_note = await self._create_credit_note(
                invoice,
                actor,
                reason=reason,
                selected_items=selected_items,
                full_credit=full_credit,
                description=description,
                credit_note_date=credit_note_date,
            )

        logger.info(
            f"Credit note {credit_note.credit_note_number} ({credit_note.total}) created "
            f"for invoice {invoice.invoice_number}"
        )
        return credit_note

    async def _create_credit_note(
        self,
        invoice: Invoice,
        actor: ActorContext,
        reason: str,
        selected_items: Optional[Sequence[CreditSelection]],
        full_credit: bool,
        description: Optional[str],
        credit_note_date: Optional[date],
    ) -> CreditNote:
        if invoice.status == InvoiceStatus.DRAFT:
            raise DraftInvoiceException(invoice.id, operation="credit")

        credited = await self.get_total_credited(invoice.id)
        if credited >= invoice.total:
            raise InvoiceFullyCreditedException(invoice.invoice_number, invoice.total)

        if full_credit:
            subtotal = invoice.subtotal
            tax_amount = invoice.tax_amount
            total = invoice.total
            items = [self._copy_item(item, item.quantity, item.subtotal, item.tax_amount, item.total, position)
                     for position, item in enumerate(invoice.items, start=1)]
        else:
            lines = self._resolve_selection(invoice, selected_items)
            subtotal = sum((line.subtotal for line in lines), Decimal("0.00"))
            tax_amount = sum((line.tax_amount for line in lines), Decimal("0.00"))
            total = subtotal + tax_amount
            items = [self._copy_item(line.source, line.quantity, line.subtotal, line.tax_amount, line.total, position)
                     for position, line in enumerate(lines, start=1)]

        if credit_note_date is None:
            credit_note_date = max(date.today(), invoice.issue_date)
        elif credit_note_date < invoice.issue_date:
            raise ValidationException(
                f"Credit note date {credit_note_date} is before the invoice date {invoice.issue_date}",
                field="credit_note_date",
            )

        await self.validate_credit_amount(invoice, total)

        credit_note = CreditNote(
            tenant_id=invoice.tenant_id,
            client_id=invoice.client_id,
            client=invoice.client,
            invoice_id=invoice.id,
            credit_note_number="",
            credit_note_date=credit_note_date,
            reason=reason,
            description=description,
            subtotal=subtotal,
            tax_amount=tax_amount,
            total=total,
            currency=invoice.currency,
            status=CreditNoteStatus.DRAFT,
            items=items,
        )
        assignment = await self.chain.assign(invoice.tenant_id, DocumentFamily.CREDIT_NOTE, credit_note)
        credit_note.signature = self.signer.sign(assignment.hash)

        self.db.add(credit_note)
        await self.db.flush()

        await self.audit.record(invoice, AuditAction.MODIFIED, actor, {
            "action": "credit_note_created",
            "credit_note_id": credit_note.id,
            "credit_note_number": credit_note.credit_note_number,
            "full_credit": full_credit,
            "credit_amount": credit_note.total,
            "credit_subtotal": credit_note.subtotal,
            "credit_tax": credit_note.tax_amount,
            "reason": reason,
        })
        return credit_note

    @staticmethod
    def _resolve_selection(invoice: Invoice, selected_items: Optional[Sequence[CreditSelection]]) -> List[_CreditLine]:
        if not selected_items:
            raise ValidationException(
                "Select at least one invoice line for a partial credit note",
                field="selected_items",
            )

        items_by_id: Dict[uuid.UUID, InvoiceItem] = {item.id: item for item in invoice.items}
        seen = set()
        lines = []
        for selection in selected_items:
            item = items_by_id.get(selection.item_id)
            if item is None:
                raise ValidationException(
                    f"Item {selection.item_id} does not belong to invoice {invoice.invoice_number}",
                    field="selected_items",
                    details={"item_id": str(selection.item_id)},
                )
            if item.id in seen:
                raise ValidationException(
                    f"Item {selection.item_id} is selected more than once",
                    field="selected_items",
                    details={"item_id": str(selection.item_id)},
                )
            seen.add(item.id)

            quantity = item.quantity if selection.quantity is None else Decimal(str(selection.quantity))
            if quantity <= 0 or quantity > item.quantity:
                raise ValidationException(
                    f"Quantity {quantity} is out of range for item '{item.description}' (max {item.quantity})",
                    field="selected_items",
                    details={"item_id": str(item.id), "quantity": str(quantity), "max_quantity": str(item.quantity)},
                )

            subtotal, tax_amount, total = calculate_line_totals(quantity, item.unit_price, item.tax_rate)
            lines.append(_CreditLine(item, quantity, subtotal, tax_amount, total))
        return lines

    @staticmethod
    def _copy_item(
        item: InvoiceItem,
        quantity: Decimal,
        subtotal: Decimal,
        tax_amount: Decimal,
        total: Decimal,
        position: int,
    ) -> CreditNoteItem:
        return CreditNoteItem(
            invoice_item_id=item.id,
            description=item.description,
            quantity=quantity,
            unit_price=item.unit_price,
            tax_rate=item.tax_rate,
            subtotal=subtotal,
            tax_amount=tax_amount,
            total=total,
            position=position,
        )

    # ===========================================
    # LIFECYCLE
    # ===========================================

    async def issue_credit_note(self, credit_note_id: uuid.UUID, actor: ActorContext) -> CreditNote:
        """draft -> issued; the amount is re-checked against the remaining balance."""
        async with UnitOfWork(self.db):
            invoice, credit_note = await self._lock_pair(credit_note_id, actor.tenant_id)
            await self._issue(credit_note, invoice)
            await self.audit.record(invoice, AuditAction.MODIFIED, actor, {
                "action": "credit_note_issued",
                "credit_note_id": credit_note.id,
                "credit_note_number": credit_note.credit_note_number,
                "credit_amount": credit_note.total,
            })

        logger.info(f"Credit note {credit_note.credit_note_number} issued")
        return credit_note

    async def apply_credit_note(self, credit_note_id: uuid.UUID, actor: ActorContext) -> CreditNote:
        """issued -> applied."""
        async with UnitOfWork(self.db):
            invoice, credit_note = await self._lock_pair(credit_note_id, actor.tenant_id)
            if credit_note.status != CreditNoteStatus.ISSUED:
                raise InvalidStatusTransitionException(
                    "credit note", credit_note.status.value, CreditNoteStatus.APPLIED.value
                )
            credit_note.status = CreditNoteStatus.APPLIED
            credit_note.applied_at = datetime.now(timezone.utc)
            await self.db.flush()

            await self.audit.record(invoice, AuditAction.MODIFIED, actor, {
                "action": "credit_note_applied",
                "credit_note_id": credit_note.id,
                "credit_note_number": credit_note.credit_note_number,
            })

        logger.info(f"Credit note {credit_note.credit_note_number} applied")
        return credit_note

    async def _lock_pair(self, credit_note_id: uuid.UUID, tenant_id: uuid.UUID) -> Tuple[Invoice, CreditNote]:
        # Invoice first, then credit note: same lock order as creation
        credit_note = await self.get_credit_note(credit_note_id, tenant_id)
        invoice = await self.invoices.get_invoice_for_update(credit_note.invoice_id, tenant_id)
        credit_note = await self.db.scalar(
            select(CreditNote)
            .where(CreditNote.id == credit_note_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return invoice, credit_note

    async def _issue(self, credit_note: CreditNote, invoice: Invoice) -> None:
        if credit_note.status != CreditNoteStatus.DRAFT:
            raise InvalidStatusTransitionException(
                "credit note", credit_note.status.value, CreditNoteStatus.ISSUED.value
            )
        await self.validate_credit_amount(invoice, credit_note.total, exclude_credit_note_id=credit_note.id)
        credit_note.status = CreditNoteStatus.ISSUED
        credit_note.issued_at = datetime.now(timezone.utc)
        await self.db.flush()

    # ===========================================
    # CANCELLATION
    # ===========================================

    async def cancel_invoice(self, invoice_id: uuid.UUID, actor: ActorContext, reason: str) -> CreditNote:
        """
        Cancel a sent invoice.

        Creates and issues a full credit note, marks the invoice cancelled and
        records 'modified' (credit note) and 'cancelled' audit entries, all in
        one transaction. Returns the issued credit note.
        """
        async with UnitOfWork(self.db):
            invoice = await self.invoices.get_invoice_for_update(invoice_id, actor.tenant_id)

            if invoice.status == InvoiceStatus.CANCELLED:
                raise InvoiceAlreadyCancelledException(invoice.invoice_number)
            if invoice.status == InvoiceStatus.DRAFT:
                raise DraftInvoiceException(invoice.id, operation="cancel")
            if invoice.status != InvoiceStatus.SENT:
                raise InvoiceNotCancellableException(
                    invoice.invoice_number, f"status is '{invoice.status.value}', only sent invoices can be cancelled"
                )

            credited = await self.get_total_credited(invoice.id)
            if credited > 0:
                raise InvoiceNotCancellableException(
                    invoice.invoice_number,
                    f"{credited} already credited, a full credit note would exceed the remaining amount",
                )

            previous_status = invoice.status
            credit_note = await self._create_credit_note(
                invoice,
                actor,
                reason=reason,
                selected_items=None,
                full_credit=True,
                description=f"Cancellation of invoice {invoice.invoice_number}",
                credit_note_date=None,
            )
            await self._issue(credit_note, invoice)

            invoice.status = InvoiceStatus.CANCELLED
            invoice.cancelled_at = datetime.now(timezone.utc)
            invoice.cancellation_reason = reason
            await self.db.flush()

            await self.audit.record(invoice, AuditAction.CANCELLED, actor, {
                "status": {"from": previous_status.value, "to": InvoiceStatus.CANCELLED.value},
                "reason": reason,
                "credit_note_id": credit_note.id,
                "credit_note_number": credit_note.credit_note_number,
            })

        logger.info(f"Invoice {invoice.invoice_number} cancelled with credit note {credit_note.credit_note_number}")
        return credit_note
