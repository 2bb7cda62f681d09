"""
LedgerSeal - Compliance Validator

Read-only checks over stored documents:
- Gapless sequential numbering per tenant
- Hash chain continuity (and recomputed hashes) per year
- Mandatory invoice mentions, driven by a rule table
- Issuer / client readiness before invoicing
- Audit entry signatures

Integrity findings are returned as data. Nothing in this module writes.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerseal.models.invoice import Invoice
from ledgerseal.models.sequence import DocumentFamily
from ledgerseal.models.tenant import Client, Tenant
from ledgerseal.services.audit_trail import AuditTrailRecorder
from ledgerseal.services.hash_chain import FAMILIES, SequenceAndHashChain, compute_hash
from ledgerseal.utils.error_handling import TenantNotFoundException

logger = logging.getLogger(__name__)


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class IssueCategory(str, Enum):
    NUMBERING = "numbering"
    IDENTIFICATION = "identification"
    ADDRESS = "address"
    LEGAL = "legal"
    VAT = "vat"
    PAYMENT = "payment"
    CONTACT = "contact"
    INTEGRITY = "integrity"
    ELECTRONIC = "electronic"
    REFERENCE = "reference"


# Legal forms that must print share capital / RCS registration
COMPANIES_WITH_CAPITAL = {"SARL", "EURL", "SAS", "SASU", "SA", "SNC", "SCS", "SCA"}
COMMERCIAL_COMPANIES = {"SARL", "EURL", "SAS", "SASU", "SA", "SNC"}
ARTISAN_FORMS = {"EI", "EIRL", "AUTO"}
ELECTRONIC_FORMATS = {"facturx", "ubl", "cii"}

MIN_RECOVERY_INDEMNITY = Decimal("40.00")


@dataclass(frozen=True)
class ComplianceIssue:
    field: str
    message: str
    severity: IssueSeverity
    category: IssueCategory

    def to_dict(self) -> Dict[str, str]:
        return {
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
        }


@dataclass
class ComplianceReport:
    compliant: bool
    score: int
    errors: List[ComplianceIssue] = field(default_factory=list)
    warnings: List[ComplianceIssue] = field(default_factory=list)
    info: List[ComplianceIssue] = field(default_factory=list)

    @classmethod
    def from_issues(cls, issues: List[ComplianceIssue]) -> "ComplianceReport":
        errors = [i for i in issues if i.severity == IssueSeverity.ERROR]
        warnings = [i for i in issues if i.severity == IssueSeverity.WARNING]
        info = [i for i in issues if i.severity == IssueSeverity.INFO]
        score = max(0, min(100, 100 - 10 * len(errors) - 2 * len(warnings)))
        return cls(compliant=not errors, score=score, errors=errors, warnings=warnings, info=info)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compliant": self.compliant,
            "score": self.score,
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "info": [i.to_dict() for i in self.info],
        }


@dataclass
class SequenceGap:
    from_sequence: int
    to_sequence: int
    missing_count: int
    missing_numbers: List[int]
    from_document_id: uuid.UUID
    to_document_id: uuid.UUID


@dataclass
class SequenceCheckResult:
    valid: bool
    gaps: List[SequenceGap]
    total_documents: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HashChainIssue:
    issue_type: str  # broken_chain | hash_mismatch
    document_id: uuid.UUID
    number: str
    sequence_number: int
    expected: Optional[str]
    actual: Optional[str]


@dataclass
class HashChainCheckResult:
    valid: bool
    issues: List[HashChainIssue]
    total_documents: int
    year: Optional[int] = None
    first_document: Optional[Dict[str, Any]] = None
    last_document: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AuditTrailCheckResult:
    valid: bool
    total_entries: int
    invalid_entry_ids: List[uuid.UUID]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ===========================================
# RULE TABLES
# ===========================================

@dataclass(frozen=True)
class RuleContext:
    invoice: Optional[Invoice] = None
    tenant: Optional[Tenant] = None
    client: Optional[Client] = None


@dataclass(frozen=True)
class ComplianceRule:
    """A failing check produces one issue; message may depend on the context."""
    field: str
    severity: IssueSeverity
    category: IssueCategory
    message: Union[str, Callable[[RuleContext], str]]
    violated: Callable[[RuleContext], bool]

    def evaluate(self, ctx: RuleContext) -> Optional[ComplianceIssue]:
        if not self.violated(ctx):
            return None
        message = self.message(ctx) if callable(self.message) else self.message
        return ComplianceIssue(self.field, message, self.severity, self.category)


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _legal_form(tenant: Tenant) -> str:
    return (tenant.legal_form or "").strip().upper()


def _charges_vat(invoice: Invoice) -> bool:
    return Decimal(str(invoice.tax_amount or 0)) > 0


E, W, I = IssueSeverity.ERROR, IssueSeverity.WARNING, IssueSeverity.INFO
C = IssueCategory

INVOICE_RULES: List[ComplianceRule] = [
    # Numbering and dates
    ComplianceRule("invoice_number", E, C.NUMBERING, "Invoice number is missing",
                   lambda c: _blank(c.invoice.invoice_number)),
    ComplianceRule("issue_date", E, C.NUMBERING, "Invoice date is missing",
                   lambda c: c.invoice.issue_date is None),
    ComplianceRule("due_date", E, C.PAYMENT, "Due date is missing",
                   lambda c: c.invoice.due_date is None),
    ComplianceRule("client_id", E, C.IDENTIFICATION, "Client is missing",
                   lambda c: c.client is None),
    # Issuer legal identifiers
    ComplianceRule("siret", E, C.IDENTIFICATION, "SIRET is mandatory",
                   lambda c: _blank(c.tenant.siret) and not c.tenant.is_auto_entrepreneur),
    ComplianceRule("rcs_number", W, C.LEGAL, "RCS number is missing (mandatory for companies)",
                   lambda c: _blank(c.tenant.rcs_number) and not c.tenant.is_auto_entrepreneur
                   and _legal_form(c.tenant) in COMMERCIAL_COMPANIES),
    ComplianceRule("rcs_city", W, C.LEGAL, "RCS registry city is missing",
                   lambda c: _blank(c.tenant.rcs_city) and not _blank(c.tenant.rcs_number)),
    ComplianceRule("capital", W, C.LEGAL, "Share capital is missing (mandatory for companies)",
                   lambda c: c.tenant.capital is None and _legal_form(c.tenant) in COMPANIES_WITH_CAPITAL),
    ComplianceRule("legal_form", W, C.IDENTIFICATION, "Legal form is not set",
                   lambda c: _blank(c.tenant.legal_form)),
    # VAT consistency
    ComplianceRule("vat_number", W, C.VAT, "Intra-community VAT number is missing",
                   lambda c: _charges_vat(c.invoice) and _blank(c.tenant.vat_number)
                   and not c.tenant.is_auto_entrepreneur),
    ComplianceRule("tax_amount", E, C.VAT, "An auto-entrepreneur cannot charge VAT",
                   lambda c: c.tenant.is_auto_entrepreneur and _charges_vat(c.invoice)),
    # Payment terms
    ComplianceRule("payment_conditions", E, C.PAYMENT, "Payment conditions are missing",
                   lambda c: _blank(c.invoice.payment_conditions)),
    ComplianceRule("late_payment_penalty_rate", E, C.PAYMENT, "Late payment penalty rate is missing",
                   lambda c: not c.invoice.late_payment_penalty_rate or c.invoice.late_payment_penalty_rate <= 0),
    ComplianceRule("recovery_indemnity", E, C.PAYMENT,
                   f"Fixed recovery indemnity must be at least {MIN_RECOVERY_INDEMNITY} EUR",
                   lambda c: c.invoice.recovery_indemnity is None
                   or c.invoice.recovery_indemnity < MIN_RECOVERY_INDEMNITY),
    ComplianceRule("early_payment_discount", W, C.PAYMENT,
                   "Early payment discount must be stated in the payment conditions",
                   lambda c: not _blank(c.invoice.early_payment_discount)
                   and "escompte" not in (c.invoice.payment_conditions or "").lower()
                   and "discount" not in (c.invoice.payment_conditions or "").lower()),
    ComplianceRule("iban", W, C.PAYMENT, "IBAN is missing (recommended for payments)",
                   lambda c: _blank(c.tenant.iban)),
    ComplianceRule("bic", W, C.PAYMENT, "BIC is missing (recommended with IBAN)",
                   lambda c: _blank(c.tenant.bic) and not _blank(c.tenant.iban)),
    # Tamper evidence
    ComplianceRule("sequence_number", E, C.INTEGRITY, "Sequence number is missing",
                   lambda c: c.invoice.sequence_number is None),
    ComplianceRule("hash", E, C.INTEGRITY, "Security hash is missing",
                   lambda c: _blank(c.invoice.hash)),
    ComplianceRule("signature", E, C.INTEGRITY, "Cryptographic signature is missing",
                   lambda c: _blank(c.invoice.signature)),
    # Electronic invoicing and references
    ComplianceRule("electronic_format", I, C.ELECTRONIC, "Plain PDF format: migrating to Factur-X is recommended",
                   lambda c: (c.invoice.electronic_format or "").lower() == "pdf"),
    ComplianceRule("purchase_order_number", I, C.REFERENCE,
                   lambda c: f"Purchase order referenced: {c.invoice.purchase_order_number}",
                   lambda c: not _blank(c.invoice.purchase_order_number)),
    ComplianceRule("contract_reference", I, C.REFERENCE,
                   lambda c: f"Contract referenced: {c.invoice.contract_reference}",
                   lambda c: not _blank(c.invoice.contract_reference)),
]

TENANT_RULES: List[ComplianceRule] = [
    ComplianceRule("siret", E, C.IDENTIFICATION, "SIRET is mandatory to issue invoices",
                   lambda c: _blank(c.tenant.siret)),
    ComplianceRule("company_name", E, C.IDENTIFICATION, "Company name is mandatory",
                   lambda c: _blank(c.tenant.company_name) and _blank(c.tenant.name)),
    ComplianceRule("address", E, C.ADDRESS, "Company address is mandatory",
                   lambda c: _blank(c.tenant.address)),
    ComplianceRule("postal_code", E, C.ADDRESS, "Postal code is mandatory",
                   lambda c: _blank(c.tenant.postal_code)),
    ComplianceRule("city", E, C.ADDRESS, "City is mandatory",
                   lambda c: _blank(c.tenant.city)),
    ComplianceRule("vat_number", E, C.VAT, "Intra-community VAT number is mandatory for VAT-registered businesses",
                   lambda c: c.tenant.vat_subject and _blank(c.tenant.vat_number)),
    ComplianceRule("vat_exemption_reason", E, C.VAT, "VAT exemption reason is mandatory when not VAT-registered",
                   lambda c: not c.tenant.vat_subject and _blank(c.tenant.vat_exemption_reason)),
    ComplianceRule("legal_form", W, C.IDENTIFICATION, "Legal form should be set to determine mandatory mentions",
                   lambda c: _blank(c.tenant.legal_form)),
    ComplianceRule("capital", E, C.LEGAL,
                   lambda c: f"Share capital is mandatory for {_legal_form(c.tenant)}",
                   lambda c: c.tenant.capital is None and _legal_form(c.tenant) in COMPANIES_WITH_CAPITAL),
    ComplianceRule("rcs_number", E, C.LEGAL,
                   lambda c: f"RCS number is mandatory for {_legal_form(c.tenant)}",
                   lambda c: _blank(c.tenant.rcs_number) and _legal_form(c.tenant) in COMMERCIAL_COMPANIES),
    ComplianceRule("rcs_city", E, C.LEGAL,
                   lambda c: f"RCS registry city is mandatory for {_legal_form(c.tenant)}",
                   lambda c: _blank(c.tenant.rcs_city) and _legal_form(c.tenant) in COMMERCIAL_COMPANIES),
    ComplianceRule("rm_number", I, C.LEGAL, "Craftsmen must print their RM number",
                   lambda c: _blank(c.tenant.rm_number) and _legal_form(c.tenant) in ARTISAN_FORMS),
    ComplianceRule("iban", E, C.PAYMENT, "IBAN is mandatory for electronic invoices",
                   lambda c: _blank(c.tenant.iban)),
    ComplianceRule("email", W, C.CONTACT, "Contact email should be set",
                   lambda c: _blank(c.tenant.email)),
]

CLIENT_RULES: List[ComplianceRule] = [
    ComplianceRule("name", E, C.IDENTIFICATION, "Client name is mandatory",
                   lambda c: _blank(c.client.name)),
    ComplianceRule("address", E, C.ADDRESS, "Client address is mandatory",
                   lambda c: _blank(c.client.address)),
    ComplianceRule("postal_code", E, C.ADDRESS, "Client postal code is mandatory",
                   lambda c: _blank(c.client.postal_code)),
    ComplianceRule("city", E, C.ADDRESS, "Client city is mandatory",
                   lambda c: _blank(c.client.city)),
    ComplianceRule("email", W, C.CONTACT, "Client email is recommended for sending invoices",
                   lambda c: _blank(c.client.email)),
    ComplianceRule("vat_number", W, C.VAT, "Intra-community VAT number is recommended for companies",
                   lambda c: c.client.is_company and _blank(c.client.vat_number)),
]


def evaluate_rules(rules: List[ComplianceRule], ctx: RuleContext) -> ComplianceReport:
    issues = [issue for issue in (rule.evaluate(ctx) for rule in rules) if issue is not None]
    return ComplianceReport.from_issues(issues)


class ComplianceValidator:
    """Read-only compliance checks for a tenant's documents."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.chain = SequenceAndHashChain(db)

    # ===========================================
    # NUMBERING
    # ===========================================

    async def check_sequential_numbering(
        self,
        tenant_id: uuid.UUID,
        family: DocumentFamily = DocumentFamily.INVOICE,
    ) -> SequenceCheckResult:
        """Report every hole between consecutive sequence numbers."""
        model = FAMILIES[family].model
        result = await self.db.execute(
            select(model.id, model.sequence_number)
            .where(model.tenant_id == tenant_id, model.sequence_number.is_not(None))
            .order_by(model.sequence_number)
        )
        rows = result.all()

        gaps = []
        for previous, current in zip(rows, rows[1:]):
            difference = current.sequence_number - previous.sequence_number
            if difference > 1:
                gaps.append(SequenceGap(
                    from_sequence=previous.sequence_number,
                    to_sequence=current.sequence_number,
                    missing_count=difference - 1,
                    missing_numbers=list(range(previous.sequence_number + 1, current.sequence_number)),
                    from_document_id=previous.id,
                    to_document_id=current.id,
                ))

        if not rows:
            message = "No documents to check"
        elif gaps:
            message = f"{len(gaps)} gap(s) detected in the numbering"
            logger.warning(f"Numbering gaps for tenant {tenant_id} ({family.value}): {len(gaps)}")
        else:
            message = "Sequential numbering is valid"

        return SequenceCheckResult(valid=not gaps, gaps=gaps, total_documents=len(rows), message=message)

    # ===========================================
    # HASH CHAIN
    # ===========================================

    async def check_hash_chain(
        self,
        tenant_id: uuid.UUID,
        year: Optional[int] = None,
        family: DocumentFamily = DocumentFamily.INVOICE,
    ) -> HashChainCheckResult:
        """
        Walk the chain in sequence order.

        broken_chain: previous_hash differs from the preceding document's hash.
        hash_mismatch: the stored hash no longer matches the stored fields.
        """
        number_attr = FAMILIES[family].number_attr
        date_attr = FAMILIES[family].date_attr
        documents = await self.chain.get_chain(tenant_id, family, year)

        issues: List[HashChainIssue] = []
        for index, document in enumerate(documents):
            number = getattr(document, number_attr)
            if index > 0:
                previous = documents[index - 1]
                if document.previous_hash != previous.hash:
                    issues.append(HashChainIssue(
                        issue_type="broken_chain",
                        document_id=document.id,
                        number=number,
                        sequence_number=document.sequence_number,
                        expected=previous.hash,
                        actual=document.previous_hash,
                    ))

            recomputed = compute_hash(family, document)
            if recomputed != document.hash:
                issues.append(HashChainIssue(
                    issue_type="hash_mismatch",
                    document_id=document.id,
                    number=number,
                    sequence_number=document.sequence_number,
                    expected=recomputed,
                    actual=document.hash,
                ))

        def summary(document) -> Dict[str, Any]:
            return {
                "number": getattr(document, number_attr),
                "date": getattr(document, date_attr).isoformat(),
                "hash": document.hash,
            }

        if issues:
            logger.warning(f"Hash chain issues for tenant {tenant_id} ({family.value}): {len(issues)}")

        return HashChainCheckResult(
            valid=not issues,
            issues=issues,
            total_documents=len(documents),
            year=year,
            first_document=summary(documents[0]) if documents else None,
            last_document=summary(documents[-1]) if documents else None,
        )

    # ===========================================
    # MANDATORY MENTIONS
    # ===========================================

    async def check_compliance(self, invoice: Invoice, tenant: Optional[Tenant] = None) -> ComplianceReport:
        """Run the invoice rule table; score = 100 - 10 per error - 2 per warning."""
        if tenant is None:
            tenant = await self.db.get(Tenant, invoice.tenant_id)
            if tenant is None:
                raise TenantNotFoundException(invoice.tenant_id)
        return evaluate_rules(INVOICE_RULES, RuleContext(invoice=invoice, tenant=tenant, client=invoice.client))

    def check_tenant(self, tenant: Tenant) -> ComplianceReport:
        """Can this tenant issue invoices at all?"""
        return evaluate_rules(TENANT_RULES, RuleContext(tenant=tenant))

    def check_client(self, client: Client) -> ComplianceReport:
        """Can this client receive invoices?"""
        return evaluate_rules(CLIENT_RULES, RuleContext(client=client))

    # ===========================================
    # AUDIT TRAIL
    # ===========================================

    async def check_audit_trail(self, invoice_id: uuid.UUID) -> AuditTrailCheckResult:
        entries = await AuditTrailRecorder(self.db).list_for_invoice(invoice_id)
        invalid = [entry.id for entry in entries if not AuditTrailRecorder.verify(entry)]
        return AuditTrailCheckResult(valid=not invalid, total_entries=len(entries), invalid_entry_ids=invalid)

    # ===========================================
    # METRICS
    # ===========================================

    async def compliance_metrics(self, tenant_id: uuid.UUID) -> Dict[str, Any]:
        tenant = await self.db.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundException(tenant_id)

        result = await self.db.execute(select(Invoice).where(Invoice.tenant_id == tenant_id))
        invoices = list(result.scalars().all())

        compliant = 0
        errors = 0
        warnings = 0
        electronic_ready = 0
        for invoice in invoices:
            report = await self.check_compliance(invoice, tenant)
            compliant += 1 if report.compliant else 0
            errors += len(report.errors)
            warnings += len(report.warnings)
            if (invoice.electronic_format or "").lower() in ELECTRONIC_FORMATS:
                electronic_ready += 1

        sequence = await self.check_sequential_numbering(tenant_id)
        total = len(invoices)
        return {
            "total_invoices": total,
            "compliant_invoices": compliant,
            "compliance_rate": round(compliant / total * 100, 2) if total else 100.0,
            "total_errors": errors,
            "total_warnings": warnings,
            "electronic_ready": electronic_ready,
            "sequence_valid": sequence.valid,
            "sequence_gaps": len(sequence.gaps),
        }
