"""
Entry point for the provisioning function host.

Startup order matters: configuration first (it names the log file), then
logging, then the pipeline services and finally the HTTP app.
"""

import argparse
import os
import sys
import signal
import logging
from typing import Any, Dict, Optional

from .models.config import Config
from .services.config_service import ConfigService
from .services.logging_service import LoggingService
from .services.auth_service import AppOnlyAuthenticator
from .services.session_service import SharePointSessionFactory
from .services.provisioning_engine import SiteTemplateExtractor, SiteTemplateApplier
from .services.extract_apply_service import ExtractAndApplyService
from .security.certificate_store import CertificateStore
from .app import ProvisioningFlaskApp


STATUS_FIELDS = ('thumbprint', 'client_id', 'tenant', 'certificate_store_path')


def build_extract_apply_service(config: Config) -> ExtractAndApplyService:
    """Wire the pipeline with the bundled SharePoint implementations."""
    authenticator = AppOnlyAuthenticator(authority_host=config.authority_host)

    return ExtractAndApplyService(
        config=config,
        certificate_store=CertificateStore(config.certificate_store_path, config.certificate_password),
        session_factory=SharePointSessionFactory(authenticator, max_retries=config.max_retry_attempts),
        extractor=SiteTemplateExtractor(),
        applier=SiteTemplateApplier()
    )


class ConfigurationMissing(Exception):
    """The config file did not exist; a default one has been written in its place."""


class ProvisioningFunctionApplication:
    """Owns the configured services and the Flask host for one process."""

    def __init__(self, config_path: Optional[str] = None, install_signal_handlers: bool = True):
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)
        self.config_service = ConfigService()
        self.config = None
        self.logging_service = None
        self.extract_apply_service = None
        self.flask_app = None
        self._is_running = False

        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum, frame):
        self.logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        self.shutdown()
        sys.exit(0)

    def initialize(self) -> bool:
        """
        Load configuration and build every component.

        Returns:
            True when the host is ready to serve, False otherwise. Failures are logged.
        """
        try:
            self.config = self._load_configuration()
        except ConfigurationMissing:
            self.logger.warning(
                f"Wrote default configuration to {self.config_path}; edit it and restart the function host"
            )
            return False
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to load configuration: {e}")
            return False

        try:
            self.logging_service = LoggingService(self.config)
            self.extract_apply_service = build_extract_apply_service(self.config)
            self.flask_app = ProvisioningFlaskApp(
                self.config_service,
                self.extract_apply_service,
                self.logging_service
            )
        except Exception as e:
            self.logger.error(f"Failed to initialize provisioning function: {e}", exc_info=True)
            return False

        self._is_running = True
        self.logger.info("Provisioning function initialized")
        return True

    def _load_configuration(self) -> Config:
        """Read the config file if one was given, otherwise the environment alone."""
        if not self.config_path:
            return self.config_service.load_from_environment()

        if not os.path.exists(self.config_path):
            self.config_service.create_default_config_file(self.config_path)
            raise ConfigurationMissing(self.config_path)

        return self.config_service.load_config(self.config_path)

    def run(self, host: str = '0.0.0.0', port: Optional[int] = None, debug: bool = False):
        if not self._is_running:
            self.logger.error("Application not initialized. Call initialize() first.")
            return

        try:
            self.flask_app.run(host=host, port=port, debug=debug)
        except KeyboardInterrupt:
            self.logger.info("Interrupted")
        finally:
            self.shutdown()

    def shutdown(self):
        if self._is_running:
            self._is_running = False
            self.logger.info("Provisioning function stopped")

    def is_running(self) -> bool:
        return self._is_running

    def get_status(self) -> Dict[str, Any]:
        """Summarize the loaded configuration without exposing secrets."""
        status = {'running': self._is_running, 'config_path': self.config_path}
        for name in STATUS_FIELDS:
            status[name] = getattr(self.config, name) if self.config else None
        status['function_keys_enabled'] = bool(self.config and self.config.function_keys)
        return status


def create_app(config_path: Optional[str] = None):
    """Return the Flask app for a WSGI server (e.g. ``gunicorn 'provisioning_function.main:create_app()'``)."""
    application = ProvisioningFunctionApplication(config_path, install_signal_handlers=False)
    if not application.initialize():
        raise RuntimeError("Failed to initialize provisioning function")
    return application.flask_app.get_app()


def main():
    parser = argparse.ArgumentParser(description='Site provisioning function host')
    parser.add_argument('--config', '-c', help='INI configuration file; environment variables override it')
    parser.add_argument('--host', default='0.0.0.0', help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, help='Port to bind to (defaults to PORT / api_port)')
    parser.add_argument('--debug', action='store_true', help='Enable Flask debug mode')
    parser.add_argument('--check-config', action='store_true', help='Print the effective configuration and exit')

    args = parser.parse_args()

    app = ProvisioningFunctionApplication(config_path=args.config)

    if not app.initialize():
        print("Failed to initialize provisioning function")
        sys.exit(1)

    if args.check_config:
        print("Configuration check passed")
        for name, value in app.get_status().items():
            print(f"{name}: {'(not set)' if value in (None, '') else value}")
        sys.exit(0)

    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == '__main__':
    main()
