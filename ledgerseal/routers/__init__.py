"""
LedgerSeal - API Routers Package
"""

from ledgerseal.routers import invoices, credit_notes, compliance, exports

__all__ = ["invoices", "credit_notes", "compliance", "exports"]
