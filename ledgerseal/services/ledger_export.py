"""
LedgerSeal - Ledger Export (FEC)

Builds the French statutory ledger file (Fichier des Ecritures Comptables):
pipe-delimited, CRLF-separated double-entry lines with a fixed 18-column
header.

Accounting scheme:
- Invoice:     debit 411 (total), credit 707 (subtotal), credit 4457 (tax)
- Credit note: the mirror image, under the credit note's own number/date
- Audit entry: zero-amount informational line on the suspense account

LedgerExportBuilder is a pure function of its inputs. LedgerExportService
loads the documents in scope and hands them to the builder.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.config import settings
from ledgerseal.models.audit import AuditAction, InvoiceAuditLog
from ledgerseal.models.credit_note import COUNTED_CREDIT_NOTE_STATUSES, CreditNote
from ledgerseal.models.invoice import Invoice, InvoiceStatus
from ledgerseal.models.tenant import Tenant
from ledgerseal.services.audit_trail import AuditTrailRecorder, naive_utc
from ledgerseal.utils.error_handling import (
    DraftInvoiceException,
    InvalidDateRangeException,
    InvoiceNotFoundException,
    LedgerExportException,
    TenantNotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)


FEC_HEADER = (
    "JournalCode",
    "JournalLib",
    "EcritureNum",
    "EcritureDate",
    "CompteNum",
    "CompteLib",
    "CompAuxNum",
    "CompAuxLib",
    "PieceRef",
    "PieceDate",
    "EcritureLib",
    "Debit",
    "Credit",
    "EcritureLet",
    "DateLet",
    "ValidDate",
    "Montantdevise",
    "Idevise",
)

FEC_SEPARATOR = "|"
FEC_LINE_ENDING = "\r\n"
FEC_MAX_FIELD_LENGTH = 255

AUDIT_ACTION_LABELS: Dict[AuditAction, str] = {
    AuditAction.CREATED: "Creation facture",
    AuditAction.SENT: "Envoi facture",
    AuditAction.PAID: "Paiement facture",
    AuditAction.CANCELLED: "Annulation facture",
    AuditAction.MODIFIED: "Modification facture",
}

_ZERO = Decimal("0.00")

# Printable ASCII and Latin-1 only
_FEC_DISALLOWED = re.compile(r"[^\x20-\x7E\xA0-\xFF]")


class ExportEncoding(str, Enum):
    """Output character sets accepted by tax auditors."""
    UTF8 = "utf-8"
    CP1252 = "cp1252"


def sanitize_field(value) -> str:
    """Replace separators and line breaks, drop characters outside Latin-1, cap at 255."""
    if value is None:
        return ""
    cleaned = str(value)
    for char in ("|", "\r", "\n", "\t"):
        cleaned = cleaned.replace(char, " ")
    cleaned = _FEC_DISALLOWED.sub("", cleaned)
    return cleaned[:FEC_MAX_FIELD_LENGTH]


def format_amount(value: Optional[Decimal]) -> str:
    if value is None:
        return ""
    return f"{Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):.2f}"


def format_date(value: Optional[date]) -> str:
    return value.strftime("%Y%m%d") if value else ""


@dataclass(frozen=True)
class LedgerEntry:
    """One FEC line."""
    journal_code: str
    journal_label: str
    entry_number: str
    entry_date: date
    account_number: str
    account_label: str
    aux_account_number: str
    aux_account_label: str
    piece_ref: str
    piece_date: date
    label: str
    debit: Decimal
    credit: Decimal
    lettering: str = ""
    lettering_date: Optional[date] = None
    validation_date: Optional[date] = None
    foreign_amount: Optional[Decimal] = None
    currency_code: str = "EUR"

    def to_fields(self) -> List[str]:
        return [
            sanitize_field(self.journal_code),
            sanitize_field(self.journal_label),
            sanitize_field(self.entry_number),
            format_date(self.entry_date),
            sanitize_field(self.account_number),
            sanitize_field(self.account_label),
            sanitize_field(self.aux_account_number),
            sanitize_field(self.aux_account_label),
            sanitize_field(self.piece_ref),
            format_date(self.piece_date),
            sanitize_field(self.label),
            format_amount(self.debit),
            format_amount(self.credit),
            sanitize_field(self.lettering),
            format_date(self.lettering_date),
            format_date(self.validation_date),
            format_amount(self.foreign_amount),
            sanitize_field(self.currency_code),
        ]


def _audit_date(timestamp: datetime) -> date:
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc)
    return timestamp.date()


class LedgerExportBuilder:
    """Turns invoices, credit notes and audit entries into FEC bytes."""

    def __init__(self):
        self.sales_journal = (settings.fec_sales_journal_code, settings.fec_sales_journal_label)
        self.misc_journal = (settings.fec_misc_journal_code, settings.fec_misc_journal_label)
        self.client_account = (settings.fec_client_account, settings.fec_client_account_label)
        self.revenue_account = (settings.fec_revenue_account, settings.fec_revenue_account_label)
        self.vat_account = (settings.fec_vat_account, settings.fec_vat_account_label)
        self.suspense_account = (settings.fec_suspense_account, settings.fec_suspense_account_label)

    # ===========================================
    # LINE GENERATION
    # ===========================================

    def _document_lines(
        self,
        number: str,
        document_date: date,
        client_id: uuid.UUID,
        client_name: str,
        subtotal: Decimal,
        tax_amount: Decimal,
        total: Decimal,
        currency: str,
        labels: Sequence[str],
        reverse: bool,
    ) -> List[LedgerEntry]:
        def line(account, aux_number, aux_label, label, amount, on_debit):
            if reverse:
                on_debit = not on_debit
            return LedgerEntry(
                journal_code=self.sales_journal[0],
                journal_label=self.sales_journal[1],
                entry_number=number,
                entry_date=document_date,
                account_number=account[0],
                account_label=account[1],
                aux_account_number=aux_number,
                aux_account_label=aux_label,
                piece_ref=number,
                piece_date=document_date,
                label=label,
                debit=amount if on_debit else _ZERO,
                credit=_ZERO if on_debit else amount,
                validation_date=document_date,
                currency_code=currency,
            )

        lines = [
            line(self.client_account, str(client_id), client_name, labels[0], total, True),
            line(self.revenue_account, "", "", labels[1], subtotal, False),
        ]
        if tax_amount and Decimal(str(tax_amount)) > 0:
            lines.append(line(self.vat_account, "", "", labels[2], tax_amount, False))
        return lines

    def invoice_entries(self, invoice: Invoice) -> List[LedgerEntry]:
        number = invoice.invoice_number
        return self._document_lines(
            number,
            invoice.issue_date,
            invoice.client_id,
            invoice.client.name if invoice.client else "Client",
            invoice.subtotal,
            invoice.tax_amount,
            invoice.total,
            invoice.currency,
            (f"Facture {number}", f"Vente {number}", f"TVA {number}"),
            reverse=False,
        )

    def credit_note_entries(self, credit_note: CreditNote) -> List[LedgerEntry]:
        number = credit_note.credit_note_number
        return self._document_lines(
            number,
            credit_note.credit_note_date,
            credit_note.client_id,
            credit_note.client.name if credit_note.client else "Client",
            credit_note.subtotal,
            credit_note.tax_amount,
            credit_note.total,
            credit_note.currency,
            (f"Avoir {number}", f"Annulation vente {number}", f"Annulation TVA {number}"),
            reverse=True,
        )

    def audit_entry(self, invoice: Invoice, audit_log: InvoiceAuditLog) -> LedgerEntry:
        logged_on = _audit_date(audit_log.timestamp)
        return LedgerEntry(
            journal_code=self.misc_journal[0],
            journal_label=self.misc_journal[1],
            entry_number=f"{invoice.invoice_number}-AUDIT-{audit_log.id}",
            entry_date=logged_on,
            account_number=self.suspense_account[0],
            account_label=self.suspense_account[1],
            aux_account_number="",
            aux_account_label="",
            piece_ref=invoice.invoice_number,
            piece_date=invoice.issue_date,
            label=AUDIT_ACTION_LABELS.get(audit_log.action, audit_log.action.value),
            debit=_ZERO,
            credit=_ZERO,
            validation_date=logged_on,
            currency_code=invoice.currency,
        )

    # ===========================================
    # ASSEMBLY
    # ===========================================

    def build_entries(
        self,
        invoices: Iterable[Invoice],
        credit_notes: Iterable[CreditNote] = (),
        audit_logs: Iterable[InvoiceAuditLog] = (),
    ) -> List[LedgerEntry]:
        """
        All lines in output order.

        Inputs are first put in a canonical order so fetch order never shows
        in the output; the final sort by entry date is stable, keeping
        invoice, credit note, audit order for same-day lines.
        """
        invoices = sorted(invoices, key=lambda i: (i.issue_date, i.sequence_number or 0, i.invoice_number))
        credit_notes = sorted(credit_notes, key=lambda c: (c.credit_note_date, c.sequence_number, c.credit_note_number))
        audit_logs = sorted(audit_logs, key=lambda a: (naive_utc(a.timestamp), str(a.id)))

        invoices_by_id = {invoice.id: invoice for invoice in invoices}

        entries: List[LedgerEntry] = []
        for invoice in invoices:
            entries.extend(self.invoice_entries(invoice))
        for credit_note in credit_notes:
            entries.extend(self.credit_note_entries(credit_note))
        for audit_log in audit_logs:
            invoice = invoices_by_id.get(audit_log.invoice_id)
            if invoice is None:
                raise LedgerExportException(
                    "audit entry references an invoice outside the export scope",
                    details={"audit_log_id": str(audit_log.id), "invoice_id": str(audit_log.invoice_id)},
                )
            entries.append(self.audit_entry(invoice, audit_log))

        return sorted(entries, key=lambda e: e.entry_date)

    @staticmethod
    def serialize(entries: Iterable[LedgerEntry]) -> str:
        lines = [FEC_SEPARATOR.join(FEC_HEADER)]
        lines.extend(FEC_SEPARATOR.join(entry.to_fields()) for entry in entries)
        return FEC_LINE_ENDING.join(lines)

    def build(
        self,
        invoices: Iterable[Invoice],
        credit_notes: Iterable[CreditNote] = (),
        audit_logs: Iterable[InvoiceAuditLog] = (),
        encoding: ExportEncoding = ExportEncoding.UTF8,
    ) -> bytes:
        """Lines, text and the final character-set transform in one call."""
        content = self.serialize(self.build_entries(invoices, credit_notes, audit_logs))
        return content.encode(ExportEncoding(encoding).value)


def period_filename(siret: Optional[str], start_date: date, end_date: date) -> str:
    return f"FEC_{siret or 'NOSIRET'}_{start_date:%Y%m%d}_{end_date:%Y%m%d}.txt"


def audit_trail_filename(invoice_number: str) -> str:
    return f"Audit_Trail_{sanitize_field(invoice_number).replace(' ', '_')}.txt"


def batch_audit_trail_filename(generated_at: Optional[datetime] = None) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    return f"Audit_Trail_Batch_{generated_at:%Y%m%d_%H%M%S}.txt"


class LedgerExportService:
    """Loads export scopes from the database; read-only."""

    def __init__(self, db: AsyncSession, builder: Optional[LedgerExportBuilder] = None):
        self.db = db
        self.builder = builder or LedgerExportBuilder()
        self.audit = AuditTrailRecorder(db)

    async def get_tenant(self, tenant_id: uuid.UUID) -> Tenant:
        tenant = await self.db.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundException(tenant_id)
        return tenant

    async def export_period(
        self,
        tenant_id: uuid.UUID,
        start_date: date,
        end_date: date,
        encoding: ExportEncoding = ExportEncoding.UTF8,
    ) -> bytes:
        """Every non-draft invoice and issued/applied credit note dated in the period."""
        if start_date > end_date:
            raise InvalidDateRangeException(start_date.isoformat(), end_date.isoformat())

        invoices = await self.db.execute(
            select(Invoice).where(
                Invoice.tenant_id == tenant_id,
                Invoice.status != InvoiceStatus.DRAFT,
                Invoice.issue_date >= start_date,
                Invoice.issue_date <= end_date,
            )
        )
        credit_notes = await self.db.execute(
            select(CreditNote).where(
                CreditNote.tenant_id == tenant_id,
                CreditNote.status.in_(COUNTED_CREDIT_NOTE_STATUSES),
                CreditNote.credit_note_date >= start_date,
                CreditNote.credit_note_date <= end_date,
            )
        )
        invoice_list = list(invoices.scalars().all())
        credit_note_list = list(credit_notes.scalars().all())

        content = self.builder.build(invoice_list, credit_note_list, encoding=encoding)
        logger.info(
            f"FEC export generated for tenant {tenant_id} ({start_date} to {end_date}): "
            f"{len(invoice_list)} invoices, {len(credit_note_list)} credit notes"
        )
        return content

    async def export_invoice_audit_trail(
        self,
        tenant_id: uuid.UUID,
        invoice_id: uuid.UUID,
        encoding: ExportEncoding = ExportEncoding.UTF8,
    ) -> bytes:
        return await self.export_batch_audit_trail(tenant_id, [invoice_id], encoding)

    async def export_batch_audit_trail(
        self,
        tenant_id: uuid.UUID,
        invoice_ids: Sequence[uuid.UUID],
        encoding: ExportEncoding = ExportEncoding.UTF8,
    ) -> bytes:
        """Invoices, their issued/applied credit notes and their audit entries."""
        invoices = await self.load_finalized_invoices(tenant_id, invoice_ids)
        ids = [invoice.id for invoice in invoices]

        credit_notes = await self.db.execute(
            select(CreditNote).where(
                CreditNote.tenant_id == tenant_id,
                CreditNote.invoice_id.in_(ids),
                CreditNote.status.in_(COUNTED_CREDIT_NOTE_STATUSES),
            )
        )
        credit_note_list = list(credit_notes.scalars().all())
        audit_logs = await self.audit.list_for_invoices(ids)

        content = self.builder.build(invoices, credit_note_list, audit_logs, encoding=encoding)
        logger.info(f"Audit trail export generated for {len(invoices)} invoice(s), {len(audit_logs)} audit entries")
        return content

    async def load_finalized_invoices(self, tenant_id: uuid.UUID, invoice_ids: Sequence[uuid.UUID]) -> List[Invoice]:
        if not invoice_ids:
            raise ValidationException("At least one invoice id is required", field="invoice_ids")

        unique_ids = list(dict.fromkeys(invoice_ids))
        result = await self.db.execute(
            select(Invoice).where(Invoice.tenant_id == tenant_id, Invoice.id.in_(unique_ids))
        )
        found = {invoice.id: invoice for invoice in result.scalars().all()}

        invoices = []
        for invoice_id in unique_ids:
            invoice = found.get(invoice_id)
            if invoice is None:
                raise InvoiceNotFoundException(invoice_id)
            if invoice.status == InvoiceStatus.DRAFT:
                raise DraftInvoiceException(invoice_id, operation="export")
            invoices.append(invoice)
        return invoices
