"""
Local certificate store lookup by thumbprint.
"""
import os
import re
import logging
from typing import Optional, List, Tuple, Any
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from .models import ClientCertificate
from ..models.errors import CertificateError


CERTIFICATE_EXTENSIONS = ('.pem', '.crt', '.cer', '.der', '.pfx', '.p12')

_PEM_BLOCK = re.compile(
    rb'-----BEGIN ([A-Z0-9 ]+)-----.+?-----END \1-----',
    re.DOTALL
)


def normalize_thumbprint(thumbprint: Optional[str]) -> str:
    """Strip separators and whitespace and upper-case a thumbprint."""
    if not thumbprint:
        return ""
    return re.sub(r'[^0-9A-Fa-f]', '', thumbprint).upper()


def compute_thumbprint(certificate: x509.Certificate) -> str:
    """SHA-1 thumbprint of a certificate, upper-case hex."""
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


class CertificateStore:
    """
    Read-only certificate store backed by a directory.

    Every file with a known certificate extension is considered. PEM files
    may bundle the private key, PKCS#12 files always do, and a private key
    may also live next to the certificate as ``<name>.key``.
    """

    def __init__(self, store_path: str, password: Optional[str] = None):
        self.store_path = store_path
        self.password = password.encode() if password else None
        self.logger = logging.getLogger(__name__)

    def get_certificate(self, thumbprint: str) -> ClientCertificate:
        """
        Return the first certificate matching the thumbprint.

        This is a lookup only: expiry, chain trust and revocation are not checked.

        Raises:
            CertificateError: If no certificate matches
        """
        matches = self.find_by_thumbprint(thumbprint)

        if not matches:
            raise CertificateError(
                f"No certificate found in store '{self.store_path}' "
                f"matching thumbprint {thumbprint}"
            )

        if len(matches) > 1:
            self.logger.warning(
                f"{len(matches)} certificates match thumbprint {thumbprint}, using {matches[0].source_path}"
            )

        return matches[0]

    def find_by_thumbprint(self, thumbprint: str) -> List[ClientCertificate]:
        """Find every certificate in the store whose thumbprint matches."""
        wanted = normalize_thumbprint(thumbprint)
        if not wanted:
            return []

        return [cert for cert in self.load_certificates() if cert.thumbprint == wanted]

    def load_certificates(self) -> List[ClientCertificate]:
        """Load all certificates from the store directory."""
        certificates = []

        if not os.path.isdir(self.store_path):
            self.logger.warning(f"Certificate store directory not found: {self.store_path}")
            return certificates

        for filename in sorted(os.listdir(self.store_path)):
            if not filename.lower().endswith(CERTIFICATE_EXTENSIONS):
                continue

            cert_path = os.path.join(self.store_path, filename)
            try:
                certificates.extend(self._load_certificate_file(cert_path))
            except Exception as e:
                self.logger.warning(f"Failed to load certificate {filename}: {e}")

        return certificates

    def _load_certificate_file(self, file_path: str) -> List[ClientCertificate]:
        """Load every certificate contained in a single file."""
        with open(file_path, 'rb') as f:
            content = f.read()

        if not content.strip():
            raise ValueError(f"Certificate file is empty: {file_path}")

        if file_path.lower().endswith(('.pfx', '.p12')):
            key, cert, additional = pkcs12.load_key_and_certificates(content, self.password)
            certs = [cert] if cert is not None else []
            certs.extend(additional or [])
            return [self._build(c, file_path, key if c is cert else None) for c in certs]

        if b'-----BEGIN' in content:
            certs, key = self._parse_pem(content)
        else:
            certs, key = [x509.load_der_x509_certificate(content)], None

        if key is None:
            key = self._load_sibling_key(file_path)

        # A bundled key belongs to the leaf, which comes first in the file
        return [self._build(c, file_path, key if i == 0 else None) for i, c in enumerate(certs)]

    def _parse_pem(self, content: bytes) -> Tuple[List[x509.Certificate], Optional[Any]]:
        """Split a PEM file into its certificates and its private key."""
        certs = []
        key = None

        for match in _PEM_BLOCK.finditer(content):
            label = match.group(1)
            block = match.group(0)
            if label == b'CERTIFICATE':
                certs.append(x509.load_pem_x509_certificate(block))
            elif label.endswith(b'PRIVATE KEY') and key is None:
                key = serialization.load_pem_private_key(block, password=self.password)

        return certs, key

    def _load_sibling_key(self, file_path: str) -> Optional[Any]:
        """Load ``<name>.key`` next to a certificate file, if it exists."""
        key_path = os.path.splitext(file_path)[0] + '.key'
        if not os.path.exists(key_path):
            return None

        with open(key_path, 'rb') as f:
            return serialization.load_pem_private_key(f.read(), password=self.password)

    def _build(self, certificate: x509.Certificate, file_path: str,
               private_key: Optional[Any]) -> ClientCertificate:
        return ClientCertificate(
            certificate=certificate,
            thumbprint=compute_thumbprint(certificate),
            source_path=file_path,
            private_key=private_key
        )
