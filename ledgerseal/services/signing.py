"""
Document Signing

Produces the signature token stored next to a finalized document's hash.
The backend is chosen in settings; each backend is one small class.
"""

import hashlib
import hmac
from typing import Dict, Optional, Type

from ledgerseal.config import SignerBackend, settings


class DocumentSigner:
    """Signs and verifies a document hash."""

    backend: SignerBackend

    def sign(self, document_hash: str) -> Optional[str]:
        raise NotImplementedError

    def verify(self, document_hash: str, token: Optional[str]) -> bool:
        raise NotImplementedError


class HmacDocumentSigner(DocumentSigner):
    """HMAC-SHA256 of the document hash keyed with the application secret."""

    backend = SignerBackend.HMAC

    def __init__(self, secret_key: Optional[str] = None):
        self.secret_key = secret_key or settings.secret_key

    def sign(self, document_hash: str) -> str:
        return hmac.new(
            self.secret_key.encode(),
            document_hash.encode(),
            hashlib.sha256,
        ).hexdigest()

    def verify(self, document_hash: str, token: Optional[str]) -> bool:
        if not token:
            return False
        return hmac.compare_digest(self.sign(document_hash), token)


class UnsignedDocumentSigner(DocumentSigner):
    """No signature; documents rely on the hash chain alone."""

    backend = SignerBackend.NONE

    def sign(self, document_hash: str) -> None:
        return None

    def verify(self, document_hash: str, token: Optional[str]) -> bool:
        return token is None


SIGNER_BACKENDS: Dict[SignerBackend, Type[DocumentSigner]] = {
    SignerBackend.HMAC: HmacDocumentSigner,
    SignerBackend.NONE: UnsignedDocumentSigner,
}


def get_document_signer(backend: Optional[SignerBackend] = None) -> DocumentSigner:
    """Signer for the configured (or requested) backend."""
    return SIGNER_BACKENDS[backend or settings.document_signer]()
