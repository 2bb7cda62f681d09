"""
LedgerSeal - Invoice Service

Invoice lifecycle: draft creation, sending (finalization) and payment.
Sending is the point where an invoice receives its sequence number, chained
hash and signature; afterwards its amounts only change through credit notes.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.config import settings
from ledgerseal.context import ActorContext
from ledgerseal.database import UnitOfWork
from ledgerseal.models.audit import AuditAction
from ledgerseal.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from ledgerseal.models.sequence import DocumentFamily
from ledgerseal.models.tenant import Client, Tenant
from ledgerseal.services.audit_trail import AuditTrailRecorder
from ledgerseal.services.hash_chain import SequenceAndHashChain
from ledgerseal.services.rendering import DocumentRenderer, rendered_document_hash
from ledgerseal.services.signing import DocumentSigner, get_document_signer
from ledgerseal.utils.error_handling import (
    ClientNotFoundException,
    InvalidStatusTransitionException,
    InvoiceNotFoundException,
    MissingComplianceFieldException,
    TenantNotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_line_totals(quantity: Decimal, unit_price: Decimal, tax_rate: Decimal) -> Tuple[Decimal, Decimal, Decimal]:
    """(subtotal, tax_amount, total) of one line, each rounded to the cent."""
    subtotal = quantize(Decimal(str(quantity)) * Decimal(str(unit_price)))
    tax_amount = quantize(subtotal * Decimal(str(tax_rate)) / Decimal("100"))
    return subtotal, tax_amount, subtotal + tax_amount


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        db: AsyncSession,
        signer: Optional[DocumentSigner] = None,
        renderer: Optional[DocumentRenderer] = None,
    ):
        self.db = db
        self.signer = signer or get_document_signer()
        self.renderer = renderer
        self.chain = SequenceAndHashChain(db)
        self.audit = AuditTrailRecorder(db)

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_invoice(self, invoice_id: uuid.UUID, tenant_id: uuid.UUID) -> Invoice:
        """Get an invoice of the tenant or raise InvoiceNotFoundException."""
        invoice = await self.db.scalar(
            select(Invoice).where(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id)
        )
        if invoice is None:
            raise InvoiceNotFoundException(invoice_id)
        return invoice

    async def get_invoice_for_update(self, invoice_id: uuid.UUID, tenant_id: uuid.UUID) -> Invoice:
        """Same as get_invoice but holds a row lock until the transaction ends."""
        invoice = await self.db.scalar(
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if invoice is None:
            raise InvoiceNotFoundException(invoice_id)
        return invoice

    async def list_invoices(
        self,
        tenant_id: uuid.UUID,
        status: Optional[InvoiceStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Invoice]:
        query = select(Invoice).where(Invoice.tenant_id == tenant_id)
        if status:
            query = query.where(Invoice.status == status)
        if start_date:
            query = query.where(Invoice.issue_date >= start_date)
        if end_date:
            query = query.where(Invoice.issue_date <= end_date)
        query = query.order_by(Invoice.issue_date, Invoice.sequence_number)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_tenant(self, tenant_id: uuid.UUID) -> Tenant:
        tenant = await self.db.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundException(tenant_id)
        return tenant

    async def get_client(self, client_id: uuid.UUID, tenant_id: uuid.UUID) -> Client:
        client = await self.db.scalar(
            select(Client).where(Client.id == client_id, Client.tenant_id == tenant_id)
        )
        if client is None:
            raise ClientNotFoundException(client_id)
        return client

    # ===========================================
    # DRAFTS
    # ===========================================

    async def create_invoice(
        self,
        actor: ActorContext,
        client_id: uuid.UUID,
        issue_date: date,
        line_items_data: List[Dict[str, Any]],
        due_date: Optional[date] = None,
        currency: Optional[str] = None,
        **mentions: Any,
    ) -> Invoice:
        """
        Create a draft invoice with line items.

        Each line item dict needs description, quantity, unit_price and may
        carry tax_rate (defaults to 20%). Extra keyword arguments set the
        optional mandatory-mention columns (payment_conditions,
        late_payment_penalty_rate, recovery_indemnity, ...).
        """
        if not line_items_data:
            raise ValidationException("An invoice needs at least one line item", field="line_items")

        async with UnitOfWork(self.db):
            await self.get_tenant(actor.tenant_id)
            client = await self.get_client(client_id, actor.tenant_id)

            items = []
            subtotal = Decimal("0.00")
            tax_amount = Decimal("0.00")
            for position, item_data in enumerate(line_items_data, start=1):
                quantity = Decimal(str(item_data["quantity"]))
                unit_price = Decimal(str(item_data["unit_price"]))
                tax_rate = Decimal(str(item_data.get("tax_rate", "20.00")))
                if quantity <= 0:
                    raise ValidationException("Quantity must be positive", field=f"line_items.{position - 1}.quantity")

                item_subtotal, item_tax, item_total = calculate_line_totals(quantity, unit_price, tax_rate)
                items.append(InvoiceItem(
                    description=item_data["description"],
                    quantity=quantity,
                    unit_price=unit_price,
                    tax_rate=tax_rate,
                    subtotal=item_subtotal,
                    tax_amount=item_tax,
                    total=item_total,
                    position=position,
                ))
                subtotal += item_subtotal
                tax_amount += item_tax

            invoice = Invoice(
                tenant_id=actor.tenant_id,
                client_id=client.id,
                client=client,
                invoice_number=f"{settings.draft_number_prefix}-{uuid.uuid4().hex[:12].upper()}",
                issue_date=issue_date,
                due_date=due_date,
                subtotal=subtotal,
                tax_amount=tax_amount,
                total=subtotal + tax_amount,
                currency=currency or settings.default_currency,
                status=InvoiceStatus.DRAFT,
                items=items,
                **mentions,
            )
            self.db.add(invoice)
            await self.db.flush()

            await self.audit.record(invoice, AuditAction.CREATED, actor, {
                "status": InvoiceStatus.DRAFT.value,
                "total": invoice.total,
            })

        logger.info(f"Draft invoice {invoice.invoice_number} created for tenant {actor.tenant_id}")
        return invoice

    # ===========================================
    # LIFECYCLE
    # ===========================================

    async def send_invoice(self, invoice_id: uuid.UUID, actor: ActorContext) -> Invoice:
        """
        Finalize a draft invoice: number, hash chain, signature, document
        hash and a 'sent' audit entry, all in one transaction.
        """
        async with UnitOfWork(self.db):
            invoice = await self.get_invoice_for_update(invoice_id, actor.tenant_id)
            if invoice.status != InvoiceStatus.DRAFT:
                raise InvalidStatusTransitionException("invoice", invoice.status.value, InvoiceStatus.SENT.value)

            if settings.enforce_compliance_on_send:
                await self._ensure_ready_to_send(invoice)

            draft_number = invoice.invoice_number
            assignment = await self.chain.assign(actor.tenant_id, DocumentFamily.INVOICE, invoice)
            invoice.signature = self.signer.sign(assignment.hash)
            invoice.document_hash = await rendered_document_hash(self.renderer, invoice)
            invoice.status = InvoiceStatus.SENT
            invoice.sent_at = datetime.now(timezone.utc)
            await self.db.flush()

            await self.audit.record(invoice, AuditAction.SENT, actor, {
                "status": {"from": InvoiceStatus.DRAFT.value, "to": InvoiceStatus.SENT.value},
                "draft_number": draft_number,
                "invoice_number": invoice.invoice_number,
                "sequence_number": invoice.sequence_number,
                "hash": invoice.hash,
            })

        logger.info(f"Invoice {invoice.invoice_number} sent (sequence {invoice.sequence_number})")
        return invoice

    async def mark_paid(
        self,
        invoice_id: uuid.UUID,
        actor: ActorContext,
        paid_at: Optional[datetime] = None,
    ) -> Invoice:
        """Record full payment of a sent invoice."""
        async with UnitOfWork(self.db):
            invoice = await self.get_invoice_for_update(invoice_id, actor.tenant_id)
            if invoice.status != InvoiceStatus.SENT:
                raise InvalidStatusTransitionException("invoice", invoice.status.value, InvoiceStatus.PAID.value)

            invoice.status = InvoiceStatus.PAID
            invoice.paid_at = paid_at or datetime.now(timezone.utc)
            await self.db.flush()

            await self.audit.record(invoice, AuditAction.PAID, actor, {
                "status": {"from": InvoiceStatus.SENT.value, "to": InvoiceStatus.PAID.value},
                "paid_at": invoice.paid_at,
            })

        logger.info(f"Invoice {invoice.invoice_number} marked as paid")
        return invoice

    async def _ensure_ready_to_send(self, invoice: Invoice) -> None:
        from ledgerseal.services.compliance_service import ComplianceValidator

        validator = ComplianceValidator(self.db)
        tenant = await self.get_tenant(invoice.tenant_id)

        tenant_report = validator.check_tenant(tenant)
        if not tenant_report.compliant:
            logger.warning(f"Tenant {tenant.id} cannot send invoices: {len(tenant_report.errors)} error(s)")
            raise MissingComplianceFieldException([i.to_dict() for i in tenant_report.errors], subject="tenant")

        client_report = validator.check_client(invoice.client)
        if not client_report.compliant:
            logger.warning(f"Client {invoice.client_id} cannot receive invoices: {len(client_report.errors)} error(s)")
            raise MissingComplianceFieldException([i.to_dict() for i in client_report.errors], subject="client")
