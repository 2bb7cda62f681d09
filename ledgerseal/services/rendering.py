"""
Rendered Document Collaborator

PDF/XML generation lives outside this service. The core only needs the
rendered bytes of an invoice so it can store their hash at finalization.
"""

import hashlib
import logging
from typing import Optional, Protocol

from ledgerseal.models.invoice import Invoice
from ledgerseal.utils.error_handling import DocumentUnavailableException

logger = logging.getLogger(__name__)


class DocumentRenderer(Protocol):
    async def render(self, invoice: Invoice) -> bytes:
        ...


async def rendered_document_hash(renderer: Optional[DocumentRenderer], invoice: Invoice) -> Optional[str]:
    """
    SHA-256 of the rendered invoice, or None when no renderer is wired.

    Any renderer failure surfaces as DocumentUnavailableException so the
    enclosing unit of work rolls back.
    """
    if renderer is None:
        return None

    try:
        content = await renderer.render(invoice)
    except Exception as e:
        logger.error(f"Renderer failed for invoice {invoice.id}: {e}")
        raise DocumentUnavailableException(invoice.id, original_error=e) from e

    if not content:
        raise DocumentUnavailableException(invoice.id)

    return hashlib.sha256(content).hexdigest()
