"""
Tests for the extract-and-apply pipeline.
"""
import json
import logging
import unittest
from contextlib import contextmanager
from unittest.mock import Mock

from provisioning_function.models.config import Config
from provisioning_function.models.errors import CertificateError, AuthenticationError, SiteConnectionError
from provisioning_function.models.provisioning import ProvisioningTemplate
from provisioning_function.security.models import ClientCertificate
from provisioning_function.services.extract_apply_service import ExtractAndApplyService
from provisioning_function.services.provisioning_engine import (
    RecordingProgressListener, TemplateApplier, TemplateExtractor
)
from provisioning_function.services.session_service import SessionFactory


SOURCE_URL = "https://a.example/site"
TARGET_URL = "https://b.example/site"
VALID_BODY = json.dumps({"sourceUrl": SOURCE_URL, "targetUrl": TARGET_URL})


class FakeSession:
    """Stands in for an authenticated SiteSession."""

    def __init__(self, site_url):
        self.site_url = site_url
        self.web_url = site_url
        self.closed = False

    def close(self):
        self.closed = True


class FakeSessionFactory(SessionFactory):
    """Records every opened session and can fail for chosen URLs."""

    def __init__(self, failing_urls=()):
        self.failing_urls = set(failing_urls)
        self.opened = []
        self.calls = []
        self.events = []

    @contextmanager
    def open_session(self, site_url, client_id, tenant_id, certificate):
        self.calls.append((site_url, client_id, tenant_id, certificate))
        if site_url in self.failing_urls:
            raise SiteConnectionError(f"Could not reach {site_url}")

        session = FakeSession(site_url)
        self.opened.append(session)
        self.events.append(("open", site_url))
        try:
            yield session
        finally:
            session.close()
            self.events.append(("close", site_url))


class FakeExtractor(TemplateExtractor):

    def __init__(self, result="template", error=None):
        self.result = result
        self.error = error
        self.sessions = []

    def extract(self, session, listener):
        self.sessions.append(session)
        listener.on_progress("Web settings", 1, 2)
        if self.error:
            raise self.error
        listener.on_progress("Lists", 2, 2)
        if self.result == "template":
            return ProvisioningTemplate(source_url=session.web_url)
        return self.result


class FakeApplier(TemplateApplier):

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def apply(self, session, template, listener, clear_navigation=True):
        self.calls.append((session, template, clear_navigation))
        listener.on_progress("Navigation", 1, 1)
        if self.error:
            raise self.error


class TestExtractAndApplyService(unittest.TestCase):
    """Test cases for ExtractAndApplyService."""

    def setUp(self):
        """Set up test fixtures."""
        self.config = Config(thumbprint="ABCDEF0123", client_id="client-1", tenant="contoso.onmicrosoft.com")
        self.certificate = ClientCertificate(
            certificate=Mock(), thumbprint="ABCDEF0123", source_path="certs/store/app.pem", private_key=Mock()
        )
        self.certificate_store = Mock()
        self.certificate_store.get_certificate.return_value = self.certificate

        self.session_factory = FakeSessionFactory()
        self.extractor = FakeExtractor()
        self.applier = FakeApplier()

        self.recorders = {
            "EXTRACT": RecordingProgressListener("EXTRACT"),
            "APPLY": RecordingProgressListener("APPLY"),
        }

    def _service(self):
        return ExtractAndApplyService(
            config=self.config,
            certificate_store=self.certificate_store,
            session_factory=self.session_factory,
            extractor=self.extractor,
            applier=self.applier,
            progress_listener_factory=self.recorders.get
        )

    def test_success_returns_200_with_empty_body(self):
        """A valid request runs every stage and returns an empty 200."""
        result = self._service().handle(VALID_BODY)

        self.assertEqual(result.status_code, 200)
        self.assertIsNone(result.body)
        self.certificate_store.get_certificate.assert_called_once_with("ABCDEF0123")
        self.assertEqual(len(self.applier.calls), 1)

    def test_success_logs_extract_progress_before_apply_progress(self):
        """Progress lines are logged in the fixed format, extraction first."""
        with self.assertLogs('provisioning_function.services.extract_apply_service', level='INFO') as logs:
            self._service().handle(VALID_BODY)

        progress = [line for line in logs.output if "EXTRACT: " in line or "APPLY: " in line]
        self.assertEqual(len(progress), 3)
        self.assertIn("EXTRACT: 01/02 - Web settings", progress[0])
        self.assertIn("EXTRACT: 02/02 - Lists", progress[1])
        self.assertIn("APPLY: 01/01 - Navigation", progress[2])

    def test_progress_listener_receives_steps(self):
        """Injected listeners see the same steps as the log."""
        self._service().handle(VALID_BODY)

        extract_steps = [(s.message, s.current, s.total) for s in self.recorders["EXTRACT"].steps]
        apply_steps = [(s.message, s.current, s.total) for s in self.recorders["APPLY"].steps]
        self.assertEqual(extract_steps, [("Web settings", 1, 2), ("Lists", 2, 2)])
        self.assertEqual(apply_steps, [("Navigation", 1, 1)])

    def test_same_identity_used_for_source_and_target(self):
        """Both sessions use the configured client id, tenant and the resolved certificate."""
        self._service().handle(VALID_BODY)

        self.assertEqual(
            self.session_factory.calls,
            [
                (SOURCE_URL, "client-1", "contoso.onmicrosoft.com", self.certificate),
                (TARGET_URL, "client-1", "contoso.onmicrosoft.com", self.certificate),
            ]
        )

    def test_source_session_closed_before_target_opened(self):
        """Sessions are sequential and each one is released."""
        self._service().handle(VALID_BODY)

        self.assertEqual(self.session_factory.events, [
            ("open", SOURCE_URL), ("close", SOURCE_URL),
            ("open", TARGET_URL), ("close", TARGET_URL),
        ])
        self.assertTrue(all(session.closed for session in self.session_factory.opened))

    def test_template_passed_from_extractor_to_applier(self):
        """The extracted template reaches the applier unchanged, with navigation clearing on."""
        template = ProvisioningTemplate(source_url=SOURCE_URL)
        self.extractor.result = template

        self._service().handle(VALID_BODY)

        session, applied_template, clear_navigation = self.applier.calls[0]
        self.assertIs(applied_template, template)
        self.assertEqual(session.site_url, TARGET_URL)
        self.assertTrue(clear_navigation)

    def test_missing_fields_return_400_without_remote_calls(self):
        """Missing or null URLs are a client error and nothing else runs."""
        bodies = [
            {"targetUrl": TARGET_URL},
            {"sourceUrl": SOURCE_URL},
            {},
            {"sourceUrl": None, "targetUrl": TARGET_URL},
            {"sourceUrl": SOURCE_URL, "targetUrl": None},
        ]

        for body in bodies:
            with self.subTest(body=body):
                result = self._service().handle(json.dumps(body))

                self.assertEqual(result.status_code, 400)
                self.assertEqual(result.body, "Please pass a sourceUrl and targetUrl in the request body")

        self.certificate_store.get_certificate.assert_not_called()
        self.assertEqual(self.session_factory.calls, [])

    def test_unparseable_body_returns_400(self):
        """Bodies that are not a JSON object are rejected like missing fields."""
        for body in ["", "not json", b"[1, 2]", None, "null"]:
            with self.subTest(body=body):
                result = self._service().handle(body)
                self.assertEqual(result.status_code, 400)

        self.certificate_store.get_certificate.assert_not_called()

    def test_non_string_urls_return_400(self):
        """Numbers, objects and lists are not coerced into URLs."""
        bodies = [
            {"sourceUrl": 123, "targetUrl": TARGET_URL},
            {"sourceUrl": SOURCE_URL, "targetUrl": {"url": TARGET_URL}},
            {"sourceUrl": [SOURCE_URL], "targetUrl": TARGET_URL},
            {"sourceUrl": SOURCE_URL, "targetUrl": True},
        ]

        for body in bodies:
            with self.subTest(body=body):
                result = self._service().handle(json.dumps(body))
                self.assertEqual(result.status_code, 400)

        self.certificate_store.get_certificate.assert_not_called()
        self.assertEqual(self.session_factory.calls, [])

    def test_decoded_dict_body_is_accepted(self):
        result = self._service().handle({"sourceUrl": SOURCE_URL, "targetUrl": TARGET_URL})
        self.assertEqual(result.status_code, 200)

    def test_certificate_not_found_returns_500_with_thumbprint(self):
        """A missing certificate stops the request before any remote call."""
        self.certificate_store.get_certificate.side_effect = CertificateError(
            "No certificate found in store 'certs/store' matching thumbprint ABCDEF0123"
        )

        result = self._service().handle(VALID_BODY)

        self.assertEqual(result.status_code, 500)
        self.assertTrue(result.body.startswith("CERTIFICATE ERROR: "))
        self.assertIn("ABCDEF0123", result.body)
        self.assertEqual(result.error, "CERTIFICATE ERROR")
        self.assertEqual(self.session_factory.calls, [])

    def test_unexpected_store_failure_is_certificate_error(self):
        self.certificate_store.get_certificate.side_effect = PermissionError("store locked")

        result = self._service().handle(VALID_BODY)

        self.assertEqual(result.status_code, 500)
        self.assertEqual(result.body, "CERTIFICATE ERROR: store locked")

    def test_extraction_failure_returns_500_and_target_never_contacted(self):
        """An extractor exception becomes EXTRACT ERROR."""
        self.extractor.error = RuntimeError("list handler crashed")

        result = self._service().handle(VALID_BODY)

        self.assertEqual(result.status_code, 500)
        self.assertEqual(result.body, "EXTRACT ERROR: list handler crashed")
        self.assertEqual([call[0] for call in self.session_factory.calls], [SOURCE_URL])
        self.assertEqual(self.applier.calls, [])
        self.assertTrue(self.session_factory.opened[0].closed)

    def test_empty_template_is_extract_error(self):
        """A None template is treated as an extraction failure."""
        self.extractor.result = None

        result = self._service().handle(VALID_BODY)

        self.assertEqual(result.status_code, 500)
        self.assertIn("EXTRACT ERROR", result.body)
        self.assertEqual(self.applier.calls, [])

    def test_source_authentication_failure_is_extract_error(self):
        self.session_factory.failing_urls.add(SOURCE_URL)

        result = self._service().handle(VALID_BODY)

        self.assertEqual(result.status_code, 500)
        self.assertIn("EXTRACT ERROR", result.body)
        self.assertIn(SOURCE_URL, result.body)
        self.assertEqual(self.applier.calls, [])

    def test_unreachable_target_returns_apply_error(self):
        """An unreachable target yields APPLY ERROR after extraction completed."""
        self.session_factory.failing_urls.add(TARGET_URL)

        result = self._service().handle(VALID_BODY)

        self.assertEqual(result.status_code, 500)
        self.assertTrue(result.body.startswith("APPLY ERROR: "))
        self.assertEqual(len(self.extractor.sessions), 1)
        self.assertEqual(self.applier.calls, [])

    def test_applier_failure_returns_apply_error_and_closes_session(self):
        self.applier.error = AuthenticationError("token expired")

        result = self._service().handle(VALID_BODY)

        self.assertEqual(result.status_code, 500)
        self.assertEqual(result.body, "APPLY ERROR: token expired")
        self.assertTrue(all(session.closed for session in self.session_factory.opened))

    def test_failure_logged_at_error_level_with_exception(self):
        self.extractor.error = RuntimeError("boom")

        with self.assertLogs('provisioning_function.services.extract_apply_service', level='ERROR') as logs:
            self._service().handle(VALID_BODY)

        self.assertEqual(logs.records[0].levelno, logging.ERROR)
        self.assertIn("EXTRACT ERROR: boom", logs.records[0].getMessage())
        self.assertIsNotNone(logs.records[0].exc_info)

    def test_exception_without_message_uses_type_name(self):
        self.extractor.error = TimeoutError()

        result = self._service().handle(VALID_BODY)

        self.assertEqual(result.body, "EXTRACT ERROR: TimeoutError")


if __name__ == '__main__':
    unittest.main()
