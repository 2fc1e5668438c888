"""
Security package for certificate lookup and function key authorization.
"""
from .models import ClientCertificate, AccessToken
from .certificate_store import CertificateStore, compute_thumbprint, normalize_thumbprint
from .auth_middleware import FunctionKeyMiddleware, setup_function_key_authorization, require_function_key

__all__ = [
    'ClientCertificate',
    'AccessToken',
    'CertificateStore',
    'compute_thumbprint',
    'normalize_thumbprint',
    'FunctionKeyMiddleware',
    'setup_function_key_authorization',
    'require_function_key'
]
