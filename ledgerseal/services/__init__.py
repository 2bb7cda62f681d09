"""
LedgerSeal - Services Package

Business logic services.
"""

from ledgerseal.services.signing import DocumentSigner, HmacDocumentSigner, get_document_signer
from ledgerseal.services.hash_chain import SequenceAndHashChain, ChainAssignment, compute_hash
from ledgerseal.services.audit_trail import AuditTrailRecorder
from ledgerseal.services.invoice_service import InvoiceService
from ledgerseal.services.credit_note_service import CreditNoteWorkflow, CreditSelection
from ledgerseal.services.ledger_export import LedgerExportBuilder, LedgerExportService, ExportEncoding
from ledgerseal.services.compliance_service import ComplianceValidator, ComplianceReport

__all__ = [
    "DocumentSigner",
    "HmacDocumentSigner",
    "get_document_signer",
    "SequenceAndHashChain",
    "ChainAssignment",
    "compute_hash",
    "AuditTrailRecorder",
    "InvoiceService",
    "CreditNoteWorkflow",
    "CreditSelection",
    "LedgerExportBuilder",
    "LedgerExportService",
    "ExportEncoding",
    "ComplianceValidator",
    "ComplianceReport",
]
