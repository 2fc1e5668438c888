"""
Exception hierarchy for the extract-and-apply pipeline.

Every pipeline failure is raised as a ``ProvisioningError`` subclass tagged
with the stage it happened in. The request handler converts it to an HTTP
response exactly once.
"""
from typing import Optional


BAD_REQUEST_MESSAGE = "Please pass a sourceUrl and targetUrl in the request body"


class ProvisioningError(Exception):
    """Base class for all stage-tagged pipeline errors."""

    stage: str = "PROVISIONING"
    status_code: int = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def label(self) -> str:
        return f"{self.stage} ERROR"

    @property
    def user_message(self) -> str:
        """Message returned to the caller, prefixed with the stage label."""
        return f"{self.label}: {self.message}"


class RequestValidationError(ProvisioningError):
    """The request body is missing sourceUrl or targetUrl."""

    stage = "VALIDATION"
    status_code = 400

    def __init__(self, message: str = BAD_REQUEST_MESSAGE):
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return self.message


class CertificateError(ProvisioningError):
    """No certificate in the local store matches the configured thumbprint."""

    stage = "CERTIFICATE"


class ExtractError(ProvisioningError):
    """Authentication, connectivity or extraction failure on the source site."""

    stage = "EXTRACT"


class ApplyError(ProvisioningError):
    """Authentication, connectivity or application failure on the target site."""

    stage = "APPLY"


class AuthenticationError(Exception):
    """App-only token acquisition failed."""


class SiteConnectionError(Exception):
    """A remote site call failed or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
