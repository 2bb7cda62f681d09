"""
Tests for sequential numbering and the document hash chain.
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy import update

from ledgerseal.models.credit_note import CreditNoteItem
from ledgerseal.models.invoice import Invoice, InvoiceItem
from ledgerseal.models.sequence import DocumentFamily
from ledgerseal.services.hash_chain import (
    HASH_VERSION,
    SequenceAndHashChain,
    canonical_payload,
    compute_hash,
    format_document_number,
)
from ledgerseal.utils.error_handling import ImmutableRecordException
from factories import MANDATORY_MENTIONS, STANDARD_LINES


def make_document(**overrides):
    fields = dict(
        tenant_id=uuid4(),
        client_id=uuid4(),
        invoice_number="INV-2026-000001",
        sequence_number=1,
        issue_date=date(2026, 1, 10),
        subtotal=Decimal("100.00"),
        tax_amount=Decimal("20.00"),
        total=Decimal("120.00"),
        currency="EUR",
        previous_hash=None,
        hash_version=HASH_VERSION,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestCanonicalHash:
    """Pure hashing helpers."""

    def test_hash_is_deterministic(self):
        document = make_document()
        assert compute_hash(DocumentFamily.INVOICE, document) == compute_hash(DocumentFamily.INVOICE, document)
        assert len(compute_hash(DocumentFamily.INVOICE, document)) == 64

    def test_amount_representation_does_not_change_hash(self):
        first = make_document(total=Decimal("120"))
        second = make_document(tenant_id=first.tenant_id, client_id=first.client_id, total=Decimal("120.00"))
        assert compute_hash(DocumentFamily.INVOICE, first) == compute_hash(DocumentFamily.INVOICE, second)

    def test_any_covered_field_changes_hash(self):
        document = make_document()
        original = compute_hash(DocumentFamily.INVOICE, document)

        for field, value in [
            ("total", Decimal("121.00")),
            ("invoice_number", "INV-2026-000002"),
            ("issue_date", date(2026, 1, 11)),
            ("previous_hash", "a" * 64),
            ("client_id", uuid4()),
        ]:
            tampered = make_document(**{**vars(document), field: value})
            assert compute_hash(DocumentFamily.INVOICE, tampered) != original, field

    def test_mutable_fields_are_not_covered(self):
        document = make_document()
        original = compute_hash(DocumentFamily.INVOICE, document)
        document.status = "paid"
        document.updated_at = "2026-05-01T10:00:00"
        assert compute_hash(DocumentFamily.INVOICE, document) == original

    def test_payload_lists_explicit_fields(self):
        payload = canonical_payload(DocumentFamily.INVOICE, make_document())
        assert set(payload) == {
            "family", "hash_version", "tenant_id", "client_id", "number", "sequence_number",
            "date", "subtotal", "tax_amount", "total", "currency", "previous_hash",
        }
        assert payload["total"] == "120.00"

    def test_credit_note_payload_includes_invoice(self):
        credit_note = SimpleNamespace(
            **{k: v for k, v in vars(make_document()).items() if k not in ("invoice_number", "issue_date")},
            credit_note_number="CN-2026-000001",
            credit_note_date=date(2026, 2, 1),
            invoice_id=uuid4(),
        )
        payload = canonical_payload(DocumentFamily.CREDIT_NOTE, credit_note)
        assert payload["invoice_id"] == str(credit_note.invoice_id)
        assert payload["number"] == "CN-2026-000001"

    def test_unknown_version_is_rejected(self):
        with pytest.raises(ValueError):
            canonical_payload(DocumentFamily.INVOICE, make_document(), version=99)

    def test_document_number_format(self):
        assert format_document_number(DocumentFamily.INVOICE, date(2026, 7, 1), 42) == "INV-2026-000042"
        assert format_document_number(DocumentFamily.CREDIT_NOTE, date(2027, 1, 3), 1) == "CN-2027-000001"


class TestSequenceAssignment:
    """Numbering and chaining through the invoice lifecycle."""

    @pytest.mark.asyncio
    async def test_first_invoice_starts_chain(self, sent_invoice):
        assert sent_invoice.sequence_number == 1
        assert sent_invoice.invoice_number == "INV-2026-000001"
        assert sent_invoice.previous_hash is None
        assert sent_invoice.hash == compute_hash(DocumentFamily.INVOICE, sent_invoice)
        assert sent_invoice.hash_version == HASH_VERSION

    @pytest.mark.asyncio
    async def test_consecutive_invoices_are_chained(self, invoice_service, actor, test_client):
        sent = []
        for day in (1, 2, 3):
            draft = await invoice_service.create_invoice(
                actor,
                client_id=test_client.id,
                issue_date=date(2026, 5, day),
                line_items_data=STANDARD_LINES,
                **MANDATORY_MENTIONS,
            )
            sent.append(await invoice_service.send_invoice(draft.id, actor))

        assert [i.sequence_number for i in sent] == [1, 2, 3]
        assert sent[1].previous_hash == sent[0].hash
        assert sent[2].previous_hash == sent[1].hash

    @pytest.mark.asyncio
    async def test_drafts_do_not_consume_numbers(self, invoice_service, actor, test_client):
        first = await invoice_service.create_invoice(
            actor, client_id=test_client.id, issue_date=date(2026, 5, 1), line_items_data=STANDARD_LINES,
        )
        second = await invoice_service.create_invoice(
            actor, client_id=test_client.id, issue_date=date(2026, 5, 2), line_items_data=STANDARD_LINES,
        )
        assert first.sequence_number is None
        assert first.invoice_number.startswith("DRAFT-")

        # Sent out of creation order: numbers follow sending order
        sent_second = await invoice_service.send_invoice(second.id, actor)
        sent_first = await invoice_service.send_invoice(first.id, actor)
        assert sent_second.sequence_number == 1
        assert sent_first.sequence_number == 2

    @pytest.mark.asyncio
    async def test_families_are_numbered_independently(self, sent_invoice, workflow, actor):
        credit_note = await workflow.create_from_invoice(sent_invoice.id, actor, reason="Erreur", full_credit=True)
        assert credit_note.sequence_number == 1
        assert credit_note.credit_note_number.startswith("CN-")
        assert credit_note.previous_hash is None
        assert credit_note.hash == compute_hash(DocumentFamily.CREDIT_NOTE, credit_note)

    @pytest.mark.asyncio
    async def test_tenants_are_numbered_independently(self, db_session, sent_invoice, tenant):
        from ledgerseal.context import ActorContext
        from ledgerseal.models.tenant import Client, Tenant
        from ledgerseal.services.invoice_service import InvoiceService

        other = Tenant(name="Autre SARL")
        db_session.add(other)
        await db_session.commit()
        other_client = Client(tenant_id=other.id, name="Client B")
        db_session.add(other_client)
        await db_session.commit()

        service = InvoiceService(db_session)
        other_actor = ActorContext(tenant_id=other.id)
        draft = await service.create_invoice(
            other_actor, client_id=other_client.id, issue_date=date(2026, 3, 20), line_items_data=STANDARD_LINES,
        )
        other_invoice = await service.send_invoice(draft.id, other_actor)

        assert other_invoice.sequence_number == 1
        assert other_invoice.previous_hash is None
        assert sent_invoice.sequence_number == 1

    @pytest.mark.asyncio
    async def test_get_chain_filters_by_year(self, db_session, invoice_service, actor, test_client, tenant):
        for issue_date in (date(2025, 12, 30), date(2026, 1, 2)):
            draft = await invoice_service.create_invoice(
                actor, client_id=test_client.id, issue_date=issue_date, line_items_data=STANDARD_LINES,
            )
            await invoice_service.send_invoice(draft.id, actor)

        chain = SequenceAndHashChain(db_session)
        assert len(await chain.get_chain(tenant.id)) == 2
        assert [i.issue_date.year for i in await chain.get_chain(tenant.id, year=2026)] == [2026]


class TestSealedRecords:
    """A finalized invoice can no longer be rewritten through the ORM."""

    @pytest.mark.asyncio
    async def test_sealed_invoice_rejects_amount_change(self, db_session, sent_invoice):
        sent_invoice.total = Decimal("1.00")
        with pytest.raises(ImmutableRecordException):
            await db_session.flush()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_sealed_invoice_cannot_be_deleted(self, db_session, sent_invoice):
        await db_session.delete(sent_invoice)
        with pytest.raises(ImmutableRecordException):
            await db_session.flush()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_sealed_invoice_item_rejects_change(self, db_session, sent_invoice):
        item = sent_invoice.items[0]
        item.unit_price = Decimal("1.00")
        with pytest.raises(ImmutableRecordException) as exc_info:
            await db_session.flush()
        assert exc_info.value.details["fields"] == ["unit_price"]
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_reloaded_invoice_item_rejects_change(self, db_session, sent_invoice):
        item_id = sent_invoice.items[0].id
        db_session.expunge_all()

        item = await db_session.get(InvoiceItem, item_id)
        item.quantity = Decimal("50")
        with pytest.raises(ImmutableRecordException):
            await db_session.flush()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_sealed_invoice_item_cannot_be_deleted(self, db_session, sent_invoice):
        item_id = sent_invoice.items[0].id
        db_session.expunge_all()

        await db_session.delete(await db_session.get(InvoiceItem, item_id))
        with pytest.raises(ImmutableRecordException):
            await db_session.flush()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_draft_item_can_still_be_edited(self, db_session, draft_invoice):
        item = draft_invoice.items[0]
        item.description = "Conseil (révisé)"
        await db_session.commit()
        assert item.description == "Conseil (révisé)"

    @pytest.mark.asyncio
    async def test_credit_note_item_rejects_change(self, db_session, sent_invoice, workflow, actor):
        credit_note = await workflow.create_from_invoice(sent_invoice.id, actor, reason="Erreur", full_credit=True)
        item = credit_note.items[0]
        item.total = Decimal("0.01")
        with pytest.raises(ImmutableRecordException):
            await db_session.flush()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_credit_note_item_cannot_be_deleted(self, db_session, sent_invoice, workflow, actor):
        credit_note = await workflow.create_from_invoice(sent_invoice.id, actor, reason="Erreur", full_credit=True)
        item_id = credit_note.items[0].id
        db_session.expunge_all()

        await db_session.delete(await db_session.get(CreditNoteItem, item_id))
        with pytest.raises(ImmutableRecordException):
            await db_session.flush()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_draft_can_still_be_edited(self, db_session, draft_invoice):
        draft_invoice.notes = "Livraison sur site"
        draft_invoice.due_date = date(2026, 5, 1)
        await db_session.commit()
        assert draft_invoice.notes == "Livraison sur site"

    @pytest.mark.asyncio
    async def test_bulk_tampering_is_visible_in_stored_hash(self, db_session, sent_invoice):
        await db_session.execute(
            update(Invoice).where(Invoice.id == sent_invoice.id).values(total=Decimal("999.00"))
        )
        await db_session.commit()

        stored = await db_session.get(Invoice, sent_invoice.id)
        assert compute_hash(DocumentFamily.INVOICE, stored) != stored.hash
