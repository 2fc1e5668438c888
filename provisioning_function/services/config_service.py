"""
Configuration service for the provisioning function.

Settings come from an optional INI file and from the process environment,
which is what the function host populates from its application settings.
Environment values win over file values.
"""
import os
import configparser
from typing import Callable, Dict, List, Optional, Any, Mapping
import logging

from ..models.config import Config, ConfigValidationError, ConfigValidationResult


# Environment variable -> (Config field, type)
ENVIRONMENT_MAPPING = {
    "THUMBPRINT": ("thumbprint", str),
    "CLIENT_ID": ("client_id", str),
    "TENANT": ("tenant", str),
    "AUTHORITY_HOST": ("authority_host", str),
    "CERTIFICATE_STORE_PATH": ("certificate_store_path", str),
    "CERTIFICATE_PASSWORD": ("certificate_password", str),
    "FUNCTION_KEYS": ("function_keys", list),
    "MAX_RETRY_ATTEMPTS": ("max_retry_attempts", int),
    "PORT": ("api_port", int),
    "LOG_LEVEL": ("log_level", str),
    "LOG_FILE_PATH": ("log_file_path", str),
}

# "section.key" in the INI file -> (Config field, type)
FILE_MAPPING = {
    "identity.thumbprint": ("thumbprint", str),
    "identity.client_id": ("client_id", str),
    "identity.tenant": ("tenant", str),
    "identity.authority_host": ("authority_host", str),
    "certificates.store_path": ("certificate_store_path", str),
    "certificates.password": ("certificate_password", str),
    "function.keys": ("function_keys", list),
    "function.api_port": ("api_port", int),
    "provisioning.clear_navigation": ("clear_navigation", bool),
    "provisioning.max_retry_attempts": ("max_retry_attempts", int),
    "app.log_level": ("log_level", str),
    "app.log_file_path": ("log_file_path", str),
}

IDENTITY_SETTINGS = [("thumbprint", "THUMBPRINT"), ("client_id", "CLIENT_ID"), ("tenant", "TENANT")]

DEFAULT_CONFIG_TEMPLATE = """# Provisioning function configuration
# THUMBPRINT, CLIENT_ID and TENANT environment variables override the identity section.

[identity]
thumbprint =
client_id =
tenant =
authority_host = https://login.microsoftonline.com

[certificates]
store_path = certs/store
password =

[function]
keys =
api_port = 7071

[provisioning]
clear_navigation = true
max_retry_attempts = 3

[app]
log_level = INFO
log_file_path = logs/provisioning_function.log
"""


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "yes", "1", "on", "enabled")


def _parse_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return value
    return [item.strip() for item in str(value).split(",") if item.strip()]


_CONVERTERS: Dict[type, Callable[[Any], Any]] = {
    bool: _parse_bool,
    int: lambda value: int(str(value).strip()),
    list: _parse_list,
    str: lambda value: str(value).strip(),
}


class ConfigService:
    """Loads, validates and holds the process-wide Config."""

    def __init__(self, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self._config = None
        if config_path:
            self._config = self.load_config(config_path)

    def get_config(self) -> Config:
        """
        Get the loaded configuration.

        Raises:
            ValueError: If no configuration has been loaded
        """
        if self._config is None:
            raise ValueError("No configuration loaded. Call load_config() first.")
        return self._config

    def load_config(self, config_path: str, apply_environment: bool = True) -> Config:
        """
        Load configuration from an INI file, overlaid with the environment.

        Args:
            config_path: Path to the configuration file
            apply_environment: Overlay os.environ on the file values

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If the file can't be parsed or a value is invalid
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        settings = self._convert(self._read_config_file(config_path), FILE_MAPPING)
        if apply_environment:
            settings.update(self._convert(os.environ, ENVIRONMENT_MAPPING))

        return self._finish(settings)

    def load_from_environment(self, environ: Optional[Mapping[str, str]] = None) -> Config:
        """Load configuration from environment variables only."""
        environ = os.environ if environ is None else environ
        return self._finish(self._convert(environ, ENVIRONMENT_MAPPING))

    def _finish(self, settings: Dict[str, Any]) -> Config:
        if settings.get("log_level"):
            settings["log_level"] = settings["log_level"].upper()

        config = Config(**settings)
        result = self.validate_config(config)

        if result.has_errors():
            raise ValueError(f"Configuration validation failed:\n{result.get_error_summary()}")

        if result.has_warnings():
            for warning in result.warnings:
                self.logger.warning(f"Configuration warning: {warning}")

        self._config = config
        return config

    def _read_config_file(self, config_path: str) -> Dict[str, str]:
        """Flatten the INI file to "section.key" entries."""
        parser = configparser.ConfigParser()

        try:
            with open(config_path, encoding='utf-8') as f:
                parser.read_file(f)
        except configparser.Error as e:
            raise ValueError(f"Failed to parse configuration file {config_path}: {e}")

        return {
            f"{section}.{key}": value
            for section in parser.sections()
            for key, value in parser.items(section)
        }

    def _convert(self, raw: Mapping[str, Any], mapping: Dict[str, tuple]) -> Dict[str, Any]:
        """Turn raw strings into typed Config keyword arguments."""
        settings = {}

        for source_key, (field_name, field_type) in mapping.items():
            if source_key not in raw:
                continue
            raw_value = raw[source_key]
            try:
                settings[field_name] = _CONVERTERS[field_type](raw_value)
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid value for {source_key}: {raw_value} ({e})")

        return settings

    def validate_config(self, config: Config) -> ConfigValidationResult:
        """
        Check a Config for problems.

        Identity values are not required up front. Their absence is reported as
        a warning and later surfaces as a certificate or authentication failure.
        """
        issues = self._identity_issues(config) + self._path_issues(config)

        if not config.authority_host.startswith("https://"):
            issues.append(ConfigValidationError("authority_host", "Authority host must be an https:// URL"))

        if not config.function_keys:
            issues.append(ConfigValidationError(
                "function_keys",
                "No function keys configured; the endpoint will accept anonymous callers",
                "warning"
            ))

        return ConfigValidationResult(
            is_valid=not any(issue.is_blocking for issue in issues),
            errors=issues,
            warnings=[]
        )

    @staticmethod
    def _identity_issues(config: Config) -> List[ConfigValidationError]:
        return [
            ConfigValidationError(
                field_name,
                f"{env_name} is not set; requests will fail until it is configured",
                "warning"
            )
            for field_name, env_name in IDENTITY_SETTINGS
            if not getattr(config, field_name)
        ]

    @staticmethod
    def _path_issues(config: Config) -> List[ConfigValidationError]:
        issues = []

        if config.certificate_store_path and not os.path.isdir(config.certificate_store_path):
            issues.append(ConfigValidationError(
                "certificate_store_path",
                f"Certificate store directory does not exist: {config.certificate_store_path}",
                "warning"
            ))

        log_dir = os.path.dirname(config.log_file_path or "")
        if log_dir and not os.path.exists(log_dir):
            issues.append(ConfigValidationError(
                "log_file_path",
                f"Log directory does not exist: {log_dir}",
                "warning"
            ))

        return issues

    def create_default_config_file(self, config_path: str) -> None:
        """Write a commented INI file with default settings to config_path."""
        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w', encoding='utf-8') as f:
            f.write(DEFAULT_CONFIG_TEMPLATE)

        self.logger.info(f"Default configuration written to {config_path}")
