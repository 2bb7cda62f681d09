"""
Tests for the compliance validator.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from ledgerseal.models.audit import AuditAction, InvoiceAuditLog
from ledgerseal.models.invoice import Invoice
from ledgerseal.models.sequence import DocumentFamily
from ledgerseal.models.tenant import Client, Tenant
from ledgerseal.services.compliance_service import (
    ComplianceIssue,
    ComplianceReport,
    ComplianceValidator,
    IssueCategory,
    IssueSeverity,
)
from factories import MANDATORY_MENTIONS, STANDARD_LINES


async def send_invoices(invoice_service, actor, client, count):
    sent = []
    for day in range(1, count + 1):
        draft = await invoice_service.create_invoice(
            actor,
            client_id=client.id,
            issue_date=date(2026, 2, day),
            due_date=date(2026, 3, day),
            line_items_data=STANDARD_LINES,
            **MANDATORY_MENTIONS,
        )
        sent.append(await invoice_service.send_invoice(draft.id, actor))
    return sent


def fields_of(issues):
    return {issue.field for issue in issues}


class TestScore:

    def test_score_counts_errors_and_warnings(self):
        error = ComplianceIssue("siret", "missing", IssueSeverity.ERROR, IssueCategory.IDENTIFICATION)
        warning = ComplianceIssue("email", "missing", IssueSeverity.WARNING, IssueCategory.CONTACT)
        info = ComplianceIssue("contract_reference", "noted", IssueSeverity.INFO, IssueCategory.REFERENCE)

        report = ComplianceReport.from_issues([error, warning, warning, info])
        assert report.score == 86
        assert not report.compliant
        assert len(report.info) == 1

        assert ComplianceReport.from_issues([warning]).compliant
        assert ComplianceReport.from_issues([error] * 11).score == 0


class TestSequentialNumbering:

    @pytest.mark.asyncio
    async def test_no_documents(self, db_session, tenant):
        result = await ComplianceValidator(db_session).check_sequential_numbering(tenant.id)
        assert result.valid
        assert result.total_documents == 0
        assert result.message == "No documents to check"

    @pytest.mark.asyncio
    async def test_contiguous_numbering_is_valid(self, db_session, invoice_service, actor, test_client, tenant):
        await send_invoices(invoice_service, actor, test_client, 3)
        result = await ComplianceValidator(db_session).check_sequential_numbering(tenant.id)
        assert result.valid
        assert result.total_documents == 3
        assert result.gaps == []

    @pytest.mark.asyncio
    async def test_gap_is_reported(self, db_session, invoice_service, actor, test_client, tenant):
        invoices = await send_invoices(invoice_service, actor, test_client, 3)
        await db_session.execute(
            update(Invoice).where(Invoice.id == invoices[2].id).values(sequence_number=6)
        )
        await db_session.commit()

        result = await ComplianceValidator(db_session).check_sequential_numbering(tenant.id)
        assert not result.valid
        assert len(result.gaps) == 1
        gap = result.gaps[0]
        assert (gap.from_sequence, gap.to_sequence) == (2, 6)
        assert gap.missing_count == 3
        assert gap.missing_numbers == [3, 4, 5]
        assert gap.to_document_id == invoices[2].id
        assert result.message == "1 gap(s) detected in the numbering"

    @pytest.mark.asyncio
    async def test_drafts_are_ignored(self, db_session, draft_invoice, sent_invoice, tenant):
        result = await ComplianceValidator(db_session).check_sequential_numbering(tenant.id)
        assert result.valid
        assert result.total_documents == 1

    @pytest.mark.asyncio
    async def test_credit_note_family(self, db_session, workflow, actor, sent_invoice, tenant):
        await workflow.create_from_invoice(sent_invoice.id, actor, reason="Erreur", full_credit=True)
        result = await ComplianceValidator(db_session).check_sequential_numbering(
            tenant.id, family=DocumentFamily.CREDIT_NOTE
        )
        assert result.valid
        assert result.total_documents == 1


class TestHashChain:

    @pytest.mark.asyncio
    async def test_intact_chain(self, db_session, invoice_service, actor, test_client, tenant):
        invoices = await send_invoices(invoice_service, actor, test_client, 3)
        result = await ComplianceValidator(db_session).check_hash_chain(tenant.id, year=2026)

        assert result.valid
        assert result.total_documents == 3
        assert result.first_document["number"] == "INV-2026-000001"
        assert result.last_document["hash"] == invoices[-1].hash
        assert result.year == 2026

    @pytest.mark.asyncio
    async def test_broken_link_is_reported(self, db_session, invoice_service, actor, test_client, tenant):
        invoices = await send_invoices(invoice_service, actor, test_client, 3)
        await db_session.execute(
            update(Invoice).where(Invoice.id == invoices[1].id).values(previous_hash="0" * 64)
        )
        await db_session.commit()

        result = await ComplianceValidator(db_session).check_hash_chain(tenant.id)
        assert not result.valid
        broken = [issue for issue in result.issues if issue.issue_type == "broken_chain"]
        assert len(broken) == 1
        assert broken[0].document_id == invoices[1].id
        assert broken[0].expected == invoices[0].hash
        assert broken[0].actual == "0" * 64

    @pytest.mark.asyncio
    async def test_altered_amount_is_reported(self, db_session, invoice_service, actor, test_client, tenant):
        invoices = await send_invoices(invoice_service, actor, test_client, 2)
        await db_session.execute(
            update(Invoice).where(Invoice.id == invoices[0].id).values(total=Decimal("1.00"))
        )
        await db_session.commit()

        result = await ComplianceValidator(db_session).check_hash_chain(tenant.id)
        assert [(issue.issue_type, issue.document_id) for issue in result.issues] == [
            ("hash_mismatch", invoices[0].id),
        ]

    @pytest.mark.asyncio
    async def test_empty_year(self, db_session, sent_invoice, tenant):
        result = await ComplianceValidator(db_session).check_hash_chain(tenant.id, year=2025)
        assert result.valid
        assert result.total_documents == 0
        assert result.first_document is None


class TestInvoiceRules:

    @pytest.mark.asyncio
    async def test_complete_invoice_is_compliant(self, db_session, sent_invoice, tenant):
        report = await ComplianceValidator(db_session).check_compliance(sent_invoice, tenant)
        assert report.compliant
        assert report.score == 100
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_draft_without_mentions(self, db_session, invoice_service, actor, test_client):
        draft = await invoice_service.create_invoice(
            actor, client_id=test_client.id, issue_date=date(2026, 3, 1), line_items_data=STANDARD_LINES,
        )
        report = await ComplianceValidator(db_session).check_compliance(draft)

        assert not report.compliant
        assert {
            "due_date", "payment_conditions", "late_payment_penalty_rate", "recovery_indemnity",
            "sequence_number", "hash", "signature",
        } <= fields_of(report.errors)
        assert report.score == 100 - 10 * len(report.errors) - 2 * len(report.warnings)

    @pytest.mark.asyncio
    async def test_low_recovery_indemnity(self, db_session, invoice_service, actor, test_client, tenant):
        draft = await invoice_service.create_invoice(
            actor,
            client_id=test_client.id,
            issue_date=date(2026, 3, 1),
            line_items_data=STANDARD_LINES,
            **{**MANDATORY_MENTIONS, "recovery_indemnity": Decimal("20.00")},
        )
        report = await ComplianceValidator(db_session).check_compliance(draft, tenant)
        assert "recovery_indemnity" in fields_of(report.errors)

    @pytest.mark.asyncio
    async def test_auto_entrepreneur_cannot_charge_vat(self, db_session, sent_invoice, tenant):
        tenant.is_auto_entrepreneur = True
        report = await ComplianceValidator(db_session).check_compliance(sent_invoice, tenant)
        assert "tax_amount" in fields_of(report.errors)

    @pytest.mark.asyncio
    async def test_references_are_informational(self, db_session, invoice_service, actor, test_client, tenant):
        draft = await invoice_service.create_invoice(
            actor,
            client_id=test_client.id,
            issue_date=date(2026, 3, 1),
            line_items_data=STANDARD_LINES,
            purchase_order_number="PO-4411",
            **MANDATORY_MENTIONS,
        )
        report = await ComplianceValidator(db_session).check_compliance(draft, tenant)
        assert [issue.message for issue in report.info] == ["Purchase order referenced: PO-4411"]


class TestPartyRules:

    def test_complete_tenant(self, tenant):
        report = ComplianceValidator(None).check_tenant(tenant)
        assert report.compliant
        assert report.warnings == []

    def test_sarl_needs_capital_and_rcs(self):
        tenant = Tenant(
            name="Menuiserie Petit", legal_form="SARL", siret="11122233300044",
            address="1 rue Haute", postal_code="44000", city="Nantes",
            vat_subject=True, vat_number="FR11111222333", iban="FR7612345678901234567890123",
        )
        report = ComplianceValidator(None).check_tenant(tenant)
        assert {"capital", "rcs_number", "rcs_city"} <= fields_of(report.errors)
        assert "Share capital is mandatory for SARL" in [issue.message for issue in report.errors]

    def test_vat_exempt_tenant_needs_reason(self):
        tenant = Tenant(
            name="Jean Dupont", legal_form="AUTO", siret="99988877700011",
            address="5 impasse Verte", postal_code="13001", city="Marseille",
            vat_subject=False, is_auto_entrepreneur=True, iban="FR7612345678901234567890123",
            email="jean@example.fr",
        )
        report = ComplianceValidator(None).check_tenant(tenant)
        assert fields_of(report.errors) == {"vat_exemption_reason"}
        assert fields_of(report.info) == {"rm_number"}

        tenant.vat_exemption_reason = "TVA non applicable, art. 293 B du CGI"
        assert ComplianceValidator(None).check_tenant(tenant).compliant

    def test_client_rules(self, test_client):
        validator = ComplianceValidator(None)
        assert validator.check_client(test_client).score == 100

        incomplete = Client(name="SCI Horizon", is_company=True)
        report = validator.check_client(incomplete)
        assert fields_of(report.errors) == {"address", "postal_code", "city"}
        assert fields_of(report.warnings) == {"email", "vat_number"}
        assert report.score == 66


class TestAuditTrailCheck:

    @pytest.mark.asyncio
    async def test_valid_trail(self, db_session, sent_invoice):
        result = await ComplianceValidator(db_session).check_audit_trail(sent_invoice.id)
        assert result.valid
        assert result.total_entries == 2

    @pytest.mark.asyncio
    async def test_tampered_entry_is_listed(self, db_session, sent_invoice):
        await db_session.execute(
            update(InvoiceAuditLog)
            .where(InvoiceAuditLog.invoice_id == sent_invoice.id, InvoiceAuditLog.action == AuditAction.CREATED)
            .values(ip_address="198.51.100.1", changes={"status": "sent"})
        )
        await db_session.commit()

        result = await ComplianceValidator(db_session).check_audit_trail(sent_invoice.id)
        assert not result.valid
        assert len(result.invalid_entry_ids) == 1


class TestMetrics:

    @pytest.mark.asyncio
    async def test_metrics(self, db_session, invoice_service, actor, test_client, sent_invoice, tenant):
        await invoice_service.create_invoice(
            actor, client_id=test_client.id, issue_date=date(2026, 3, 20), line_items_data=STANDARD_LINES,
        )
        metrics = await ComplianceValidator(db_session).compliance_metrics(tenant.id)

        assert metrics["total_invoices"] == 2
        assert metrics["compliant_invoices"] == 1
        assert metrics["compliance_rate"] == 50.0
        assert metrics["electronic_ready"] == 1
        assert metrics["sequence_valid"] is True
        assert metrics["sequence_gaps"] == 0
        assert metrics["total_errors"] > 0

    @pytest.mark.asyncio
    async def test_metrics_without_invoices(self, db_session, tenant):
        metrics = await ComplianceValidator(db_session).compliance_metrics(tenant.id)
        assert metrics["total_invoices"] == 0
        assert metrics["compliance_rate"] == 100.0
