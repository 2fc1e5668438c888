"""
Security models for certificate lookup and app-only authentication.
"""
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class ClientCertificate:
    """A certificate found in the local store, with its private key if present."""
    certificate: Any  # cryptography.x509.Certificate
    thumbprint: str
    source_path: str
    private_key: Optional[Any] = None

    @property
    def has_private_key(self) -> bool:
        return self.private_key is not None


@dataclass
class AccessToken:
    """Bearer token issued by the identity provider."""
    token: str
    expires_at: float
    resource: str
