"""
Data models for the extract-and-apply pipeline.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from datetime import datetime

from .errors import ProvisioningError, RequestValidationError


@dataclass
class ExtractAndApplyRequest:
    """Parsed request body."""
    source_url: str
    target_url: str

    @classmethod
    def from_payload(cls, payload: Any) -> 'ExtractAndApplyRequest':
        """
        Build a request from a decoded JSON body.

        Raises:
            RequestValidationError: If the body is not an object or either
                URL is missing, null or not a string
        """
        if not isinstance(payload, dict):
            raise RequestValidationError()

        source_url = payload.get('sourceUrl')
        target_url = payload.get('targetUrl')

        if not isinstance(source_url, str) or not isinstance(target_url, str):
            raise RequestValidationError()

        return cls(source_url=source_url, target_url=target_url)


@dataclass
class SiteInfo:
    """Properties loaded by the session validation round trip."""
    url: str
    title: str
    server_relative_url: str = "/"


@dataclass
class NavigationNode:
    """A single navigation entry, optionally with children."""
    title: str
    url: str
    is_external: bool = False
    children: List['NavigationNode'] = field(default_factory=list)


@dataclass
class ListDefinition:
    """A list or library captured from the source site."""
    title: str
    base_template: int
    description: str = ""
    enable_versioning: bool = False
    content_types_enabled: bool = False


@dataclass
class ProvisioningTemplate:
    """
    In-memory description of a site's structure.

    Produced by a TemplateExtractor and consumed by a TemplateApplier. The
    request handler passes it through without looking inside.
    """
    source_url: str
    web_settings: Dict[str, Any] = field(default_factory=dict)
    lists: List[ListDefinition] = field(default_factory=list)
    navigation: Dict[str, List[NavigationNode]] = field(default_factory=dict)
    extracted_at: Optional[datetime] = None

    def __post_init__(self):
        if self.extracted_at is None:
            self.extracted_at = datetime.now()


@dataclass
class ProgressStep:
    """One progress notification reported by an extractor or applier."""
    stage: str
    message: str
    current: int
    total: int

    def format(self) -> str:
        return f"{self.stage}: {self.current:02d}/{self.total:02d} - {self.message}"


@dataclass
class FunctionResponse:
    """Outcome of one handler invocation, independent of the HTTP framework."""
    status_code: int
    body: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status_code == 200

    @classmethod
    def ok(cls) -> 'FunctionResponse':
        """Create an empty 200 response."""
        return cls(status_code=200)

    @classmethod
    def from_error(cls, error: ProvisioningError) -> 'FunctionResponse':
        """Create a response carrying a stage-tagged error message."""
        return cls(
            status_code=error.status_code,
            body=error.user_message,
            error=error.label if error.status_code >= 500 else None
        )
