"""
Configuration data models for the provisioning function.
"""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Config:
    """Main configuration class containing all function settings."""

    # Identity settings (app-only authentication)
    thumbprint: str = ""
    client_id: str = ""
    tenant: str = ""
    authority_host: str = "https://login.microsoftonline.com"

    # Certificate store settings
    certificate_store_path: str = "certs/store"
    certificate_password: Optional[str] = None

    # Function host settings
    function_keys: List[str] = field(default_factory=list)
    api_port: int = 7071

    # Provisioning settings
    clear_navigation: bool = True
    max_retry_attempts: int = 3

    # Application settings
    log_level: str = "INFO"
    log_file_path: str = "logs/provisioning_function.log"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_types()

    def _validate_types(self):
        """Ensure all configuration values have correct types."""
        if not isinstance(self.max_retry_attempts, int) or self.max_retry_attempts < 0:
            raise ValueError("max_retry_attempts must be a non-negative integer")

        if not isinstance(self.api_port, int) or not (1 <= self.api_port <= 65535):
            raise ValueError("api_port must be an integer between 1 and 65535")

        if self.clear_navigation is not True:
            raise ValueError("clear_navigation cannot be disabled")

        if not isinstance(self.function_keys, list):
            raise ValueError("function_keys must be a list of strings")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")


@dataclass
class ConfigValidationError:
    """A single problem found in a loaded configuration."""
    field: str
    message: str
    severity: str = "error"

    @property
    def is_blocking(self) -> bool:
        return self.severity == "error"

    def __str__(self):
        return f"{self.severity.upper()}: {self.field} - {self.message}"


@dataclass
class ConfigValidationResult:
    """
    Outcome of ``ConfigService.validate_config``.

    Issues may be passed in either list; they are re-sorted by severity so a
    warning never blocks startup.
    """
    is_valid: bool
    errors: List[ConfigValidationError]
    warnings: List[ConfigValidationError]

    def __post_init__(self):
        issues = self.errors + self.warnings
        self.errors = [issue for issue in issues if issue.is_blocking]
        self.warnings = [issue for issue in issues if not issue.is_blocking]

    def has_errors(self) -> bool:
        return bool(self.errors)

    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def get_error_summary(self) -> str:
        if not self.errors and not self.warnings:
            return "Configuration is valid"

        return "\n".join(str(issue) for issue in self.errors + self.warnings)
