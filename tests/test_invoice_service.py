"""
Tests for the invoice lifecycle: drafts, sending and payment.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledgerseal.config import settings
from ledgerseal.models.invoice import InvoiceStatus
from ledgerseal.models.tenant import Client
from ledgerseal.services.invoice_service import InvoiceService, calculate_line_totals
from ledgerseal.services.signing import HmacDocumentSigner
from ledgerseal.utils.error_handling import (
    ClientNotFoundException,
    DocumentUnavailableException,
    InvalidStatusTransitionException,
    MissingComplianceFieldException,
    ValidationException,
)
from factories import MANDATORY_MENTIONS, STANDARD_LINES


class StaticRenderer:
    def __init__(self, content: bytes):
        self.content = content

    async def render(self, invoice) -> bytes:
        return self.content


class BrokenRenderer:
    async def render(self, invoice) -> bytes:
        raise RuntimeError("renderer offline")


class TestLineTotals:

    def test_rounding_is_half_up(self):
        subtotal, tax, total = calculate_line_totals(Decimal("3"), Decimal("0.35"), Decimal("5.5"))
        assert subtotal == Decimal("1.05")
        assert tax == Decimal("0.06")  # 0.05775
        assert total == Decimal("1.11")

    def test_zero_rate(self):
        assert calculate_line_totals(Decimal("2"), Decimal("10"), Decimal("0")) == (
            Decimal("20.00"), Decimal("0.00"), Decimal("20.00")
        )


class TestDrafts:

    @pytest.mark.asyncio
    async def test_create_draft(self, draft_invoice, test_client):
        assert draft_invoice.status == InvoiceStatus.DRAFT
        assert draft_invoice.invoice_number.startswith("DRAFT-")
        assert draft_invoice.subtotal == Decimal("100.00")
        assert draft_invoice.tax_amount == Decimal("20.00")
        assert draft_invoice.total == Decimal("120.00")
        assert draft_invoice.currency == "EUR"
        assert draft_invoice.client_id == test_client.id
        assert [item.position for item in draft_invoice.items] == [1, 2]
        assert draft_invoice.hash is None
        assert draft_invoice.payment_conditions == MANDATORY_MENTIONS["payment_conditions"]

    @pytest.mark.asyncio
    async def test_create_requires_items(self, invoice_service, actor, test_client):
        with pytest.raises(ValidationException):
            await invoice_service.create_invoice(
                actor, client_id=test_client.id, issue_date=date(2026, 3, 1), line_items_data=[],
            )

    @pytest.mark.asyncio
    async def test_create_rejects_foreign_client(self, invoice_service, actor):
        with pytest.raises(ClientNotFoundException):
            await invoice_service.create_invoice(
                actor, client_id=uuid4(), issue_date=date(2026, 3, 1), line_items_data=STANDARD_LINES,
            )

    @pytest.mark.asyncio
    async def test_list_invoices_by_status(self, invoice_service, actor, sent_invoice, test_client):
        await invoice_service.create_invoice(
            actor, client_id=test_client.id, issue_date=date(2026, 3, 20), line_items_data=STANDARD_LINES,
        )
        drafts = await invoice_service.list_invoices(actor.tenant_id, status=InvoiceStatus.DRAFT)
        sent = await invoice_service.list_invoices(actor.tenant_id, status=InvoiceStatus.SENT)
        assert len(drafts) == 1
        assert [i.id for i in sent] == [sent_invoice.id]


class TestSending:

    @pytest.mark.asyncio
    async def test_send_finalizes_invoice(self, sent_invoice):
        assert sent_invoice.status == InvoiceStatus.SENT
        assert sent_invoice.sent_at is not None
        assert sent_invoice.invoice_number == "INV-2026-000001"
        assert HmacDocumentSigner().verify(sent_invoice.hash, sent_invoice.signature)
        assert sent_invoice.document_hash is None

    @pytest.mark.asyncio
    async def test_send_twice_is_rejected(self, invoice_service, actor, sent_invoice):
        with pytest.raises(InvalidStatusTransitionException):
            await invoice_service.send_invoice(sent_invoice.id, actor)

    @pytest.mark.asyncio
    async def test_send_stores_rendered_document_hash(self, db_session, actor, draft_invoice):
        service = InvoiceService(db_session, renderer=StaticRenderer(b"%PDF-1.7 invoice"))
        invoice = await service.send_invoice(draft_invoice.id, actor)
        assert invoice.document_hash is not None
        assert len(invoice.document_hash) == 64

    @pytest.mark.asyncio
    async def test_renderer_failure_rolls_back(self, db_session, actor, draft_invoice):
        invoice_id = draft_invoice.id
        failing = InvoiceService(db_session, renderer=BrokenRenderer())
        with pytest.raises(DocumentUnavailableException):
            await failing.send_invoice(invoice_id, actor)

        service = InvoiceService(db_session)
        invoice = await service.get_invoice(invoice_id, actor.tenant_id)
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.sequence_number is None

        # The failed attempt did not consume a number
        invoice = await service.send_invoice(invoice_id, actor)
        assert invoice.sequence_number == 1

    @pytest.mark.asyncio
    async def test_compliance_gate_blocks_incomplete_client(
        self, db_session, invoice_service, actor, monkeypatch
    ):
        monkeypatch.setattr(settings, "enforce_compliance_on_send", True)
        incomplete = Client(tenant_id=actor.tenant_id, name="Sans Adresse")
        db_session.add(incomplete)
        await db_session.commit()

        draft = await invoice_service.create_invoice(
            actor, client_id=incomplete.id, issue_date=date(2026, 3, 1), line_items_data=STANDARD_LINES,
        )
        invoice_id = draft.id
        with pytest.raises(MissingComplianceFieldException) as exc_info:
            await invoice_service.send_invoice(invoice_id, actor)

        assert exc_info.value.details["subject"] == "client"
        fields = {issue["field"] for issue in exc_info.value.details["issues"]}
        assert {"address", "postal_code", "city"} <= fields

    @pytest.mark.asyncio
    async def test_compliance_gate_passes_complete_parties(self, invoice_service, actor, draft_invoice, monkeypatch):
        monkeypatch.setattr(settings, "enforce_compliance_on_send", True)
        invoice = await invoice_service.send_invoice(draft_invoice.id, actor)
        assert invoice.status == InvoiceStatus.SENT


class TestPayment:

    @pytest.mark.asyncio
    async def test_mark_paid(self, invoice_service, actor, sent_invoice):
        paid_at = datetime(2026, 4, 1, 9, 30, tzinfo=timezone.utc)
        invoice = await invoice_service.mark_paid(sent_invoice.id, actor, paid_at=paid_at)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_at == paid_at

    @pytest.mark.asyncio
    async def test_draft_cannot_be_paid(self, invoice_service, actor, draft_invoice):
        with pytest.raises(InvalidStatusTransitionException):
            await invoice_service.mark_paid(draft_invoice.id, actor)
