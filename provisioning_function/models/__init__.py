"""
Models package for the provisioning function.
"""

from .config import Config, ConfigValidationError, ConfigValidationResult
from .errors import (
    ProvisioningError, RequestValidationError, CertificateError, ExtractError, ApplyError,
    AuthenticationError, SiteConnectionError
)
from .provisioning import (
    ExtractAndApplyRequest, SiteInfo, ProvisioningTemplate, ProgressStep, FunctionResponse
)

__all__ = [
    'Config',
    'ConfigValidationError',
    'ConfigValidationResult',
    'ProvisioningError',
    'RequestValidationError',
    'CertificateError',
    'ExtractError',
    'ApplyError',
    'AuthenticationError',
    'SiteConnectionError',
    'ExtractAndApplyRequest',
    'SiteInfo',
    'ProvisioningTemplate',
    'ProgressStep',
    'FunctionResponse'
]
