"""
Extract-and-apply pipeline: copy a provisioning template from one site to another.

A request runs strictly in sequence:

    certificate lookup -> source session + extraction -> target session + application

Each stage is wrapped on its own. The first failure ends the request with a
500 whose message starts with the stage label (``CERTIFICATE ERROR``,
``EXTRACT ERROR``, ``APPLY ERROR``). Nothing is retried here and a failed
apply is not rolled back.
"""
import json
import logging
from typing import Any, Callable, Optional, Union

from ..models.config import Config
from ..models.errors import (
    ApplyError, CertificateError, ExtractError, ProvisioningError, RequestValidationError
)
from ..models.provisioning import ExtractAndApplyRequest, FunctionResponse, ProvisioningTemplate
from ..security.certificate_store import CertificateStore
from ..security.models import ClientCertificate
from .logging_service import measure_stage
from .provisioning_engine import (
    CompositeProgressListener, LoggingProgressListener, ProgressListener,
    TemplateApplier, TemplateExtractor
)
from .session_service import SessionFactory


ListenerFactory = Callable[[str], Optional[ProgressListener]]


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class ExtractAndApplyService:
    """Validates a request and runs the extract-and-apply pipeline."""

    def __init__(self,
                 config: Config,
                 certificate_store: CertificateStore,
                 session_factory: SessionFactory,
                 extractor: TemplateExtractor,
                 applier: TemplateApplier,
                 progress_listener_factory: Optional[ListenerFactory] = None):
        """
        Args:
            config: Process-wide identity configuration (thumbprint, client id, tenant)
            certificate_store: Store searched for the configured thumbprint
            session_factory: Opens authenticated site sessions
            extractor: Produces a template from the source session
            applier: Applies a template to the target session
            progress_listener_factory: Optional callable returning an extra
                listener for a stage name ("EXTRACT" or "APPLY")
        """
        self.config = config
        self.certificate_store = certificate_store
        self.session_factory = session_factory
        self.extractor = extractor
        self.applier = applier
        self.progress_listener_factory = progress_listener_factory
        self.logger = logging.getLogger(__name__)

    def handle(self, body: Union[str, bytes, dict, None]) -> FunctionResponse:
        """
        Handle one extract-and-apply request.

        Args:
            body: Raw JSON request body, or an already decoded object

        Returns:
            FunctionResponse with 200, 400 or 500
        """
        self.logger.info("ExtractAndApply started")

        try:
            request = self.parse_request(body)
        except RequestValidationError as e:
            self.logger.warning(f"Rejected request: {e.message}")
            return FunctionResponse.from_error(e)

        try:
            self.run(request)
        except ProvisioningError as e:
            self.logger.error(e.user_message, exc_info=e.cause or e)
            return FunctionResponse.from_error(e)

        self.logger.info(f"ExtractAndApply finished: {request.source_url} -> {request.target_url}")
        return FunctionResponse.ok()

    def parse_request(self, body: Union[str, bytes, dict, None]) -> ExtractAndApplyRequest:
        """
        Decode the request body and read sourceUrl and targetUrl.

        Raises:
            RequestValidationError: If the body is not JSON or a URL is missing
        """
        payload: Any = body
        if isinstance(body, (str, bytes)):
            try:
                payload = json.loads(body) if body.strip() else None
            except ValueError:
                raise RequestValidationError()

        return ExtractAndApplyRequest.from_payload(payload)

    def run(self, request: ExtractAndApplyRequest) -> None:
        """Run the three stages in order; raises the first stage error."""
        certificate = self.resolve_certificate()
        template = self.get_provisioning_template(request.source_url, certificate)
        self.apply_provisioning_template(request.target_url, certificate, template)

    def resolve_certificate(self) -> ClientCertificate:
        """
        Look up the configured certificate.

        Raises:
            CertificateError: If no certificate matches or the store cannot be read
        """
        try:
            with measure_stage("CERTIFICATE", self.logger):
                certificate = self.certificate_store.get_certificate(self.config.thumbprint)
        except CertificateError:
            raise
        except Exception as e:
            raise CertificateError(_describe(e), cause=e) from e

        self.logger.info(f"Using certificate {certificate.thumbprint} from {certificate.source_path}")
        return certificate

    def get_provisioning_template(self, source_url: str,
                                  certificate: ClientCertificate) -> ProvisioningTemplate:
        """
        Connect to the source site and extract its template.

        Raises:
            ExtractError: On authentication, connectivity or extraction
                failure, or when no template is produced
        """
        try:
            with measure_stage("EXTRACT", self.logger, {'site_url': source_url}):
                with self.session_factory.open_session(
                        source_url, self.config.client_id, self.config.tenant, certificate) as session:
                    self.logger.info(f"Connected to sourceUrl: {session.web_url}")

                    self.logger.info("Beginning template extraction")
                    template = self.extractor.extract(session, self._listener_for("EXTRACT"))
                    self.logger.info("Finished template extraction")
        except Exception as e:
            raise ExtractError(_describe(e), cause=e) from e

        if template is None:
            raise ExtractError(f"No template was extracted from {source_url}")

        return template

    def apply_provisioning_template(self, target_url: str, certificate: ClientCertificate,
                                    template: ProvisioningTemplate) -> None:
        """
        Connect to the target site and apply the template, clearing navigation first.

        Raises:
            ApplyError: On authentication, connectivity or application failure
        """
        try:
            with measure_stage("APPLY", self.logger, {'site_url': target_url}):
                with self.session_factory.open_session(
                        target_url, self.config.client_id, self.config.tenant, certificate) as session:
                    self.logger.info(f"Connected to targetUrl: {session.web_url}")

                    self.logger.info("Beginning applying template")
                    self.applier.apply(
                        session,
                        template,
                        self._listener_for("APPLY"),
                        clear_navigation=self.config.clear_navigation
                    )
                    self.logger.info("Finished applying template")
        except Exception as e:
            raise ApplyError(_describe(e), cause=e) from e

    def _listener_for(self, stage: str) -> ProgressListener:
        logging_listener = LoggingProgressListener(stage, self.logger)
        if self.progress_listener_factory is None:
            return logging_listener
        return CompositeProgressListener(logging_listener, self.progress_listener_factory(stage))
