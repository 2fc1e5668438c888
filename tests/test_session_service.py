"""
Tests for authenticated site sessions.
"""
import unittest
from unittest.mock import Mock, patch

import requests

from provisioning_function.models.errors import AuthenticationError, SiteConnectionError
from provisioning_function.security.models import AccessToken
from provisioning_function.services.session_service import (
    SharePointSessionFactory, SiteSession, ODATA_JSON
)


def _response(status_code=200, payload=None, reason="OK"):
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.url = "https://contoso.sharepoint.com/sites/a/_api/web"
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    return response


WEB_PAYLOAD = {
    "Url": "https://contoso.sharepoint.com/sites/a",
    "Title": "Team A",
    "ServerRelativeUrl": "/sites/a"
}


class TestSiteSession(unittest.TestCase):
    """Test cases for SiteSession."""

    def setUp(self):
        self.http_session = Mock()
        self.session = SiteSession("https://contoso.sharepoint.com/sites/a/", self.http_session)

    def test_validate_loads_url_and_title(self):
        self.http_session.request.return_value = _response(payload=WEB_PAYLOAD)

        info = self.session.validate()

        self.assertEqual(info.url, "https://contoso.sharepoint.com/sites/a")
        self.assertEqual(info.title, "Team A")
        self.assertEqual(self.session.server_relative_url, "/sites/a")
        self.http_session.request.assert_called_once_with(
            'GET',
            "https://contoso.sharepoint.com/sites/a/_api/web",
            timeout=None,
            params={'$select': 'Url,Title,ServerRelativeUrl'}
        )

    def test_requests_have_no_timeout(self):
        """Long-running extraction must not be cut off by a request timeout."""
        self.http_session.request.return_value = _response(payload={})

        self.session.get_json('/_api/web/lists')

        self.assertIsNone(self.http_session.request.call_args.kwargs['timeout'])

    def test_validate_rejects_unexpected_payload(self):
        self.http_session.request.return_value = _response(payload={"value": []})

        with self.assertRaises(SiteConnectionError):
            self.session.validate()

    def test_http_error_raises_site_connection_error(self):
        self.http_session.request.return_value = _response(
            403, {"odata.error": {"message": {"value": "Access denied."}}}, reason="Forbidden"
        )

        with self.assertRaises(SiteConnectionError) as cm:
            self.session.get_json('/_api/web')

        self.assertEqual(cm.exception.status_code, 403)
        self.assertIn("Access denied.", str(cm.exception))

    def test_network_error_raises_site_connection_error(self):
        self.http_session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with self.assertRaises(SiteConnectionError) as cm:
            self.session.get_json('/_api/web')

        self.assertIn("refused", str(cm.exception))

    def test_post_with_method_override(self):
        self.http_session.request.return_value = _response(204)

        result = self.session.post_json('/_api/web', {"Title": "New"}, method_override='MERGE')

        self.assertEqual(result, {})
        args, kwargs = self.http_session.request.call_args
        self.assertEqual(args[0], 'POST')
        self.assertEqual(kwargs['json'], {"Title": "New"})
        self.assertEqual(kwargs['headers']['X-HTTP-Method'], 'MERGE')
        self.assertEqual(kwargs['headers']['Content-Type'], ODATA_JSON)

    def test_close_releases_connections_and_blocks_requests(self):
        with self.session as session:
            pass

        self.assertTrue(session.closed)
        self.http_session.close.assert_called_once()

        with self.assertRaises(SiteConnectionError):
            self.session.get_json('/_api/web')

        # Closing twice is harmless
        self.session.close()
        self.http_session.close.assert_called_once()


class TestSharePointSessionFactory(unittest.TestCase):
    """Test cases for SharePointSessionFactory."""

    def setUp(self):
        self.authenticator = Mock()
        self.authenticator.acquire_token.return_value = AccessToken(
            token="token-123", expires_at=0, resource="https://contoso.sharepoint.com/.default"
        )
        self.factory = SharePointSessionFactory(self.authenticator, max_retries=2)
        self.certificate = Mock()
        self.http_session = Mock()

    def test_open_session_authenticates_validates_and_closes(self):
        self.http_session.request.return_value = _response(payload=WEB_PAYLOAD)

        with patch.object(self.factory, '_create_http_session', return_value=self.http_session) as create:
            with self.factory.open_session(
                    "https://contoso.sharepoint.com/sites/a", "client-1", "tenant-1", self.certificate) as session:
                self.assertEqual(session.site_info.title, "Team A")
                self.assertFalse(session.closed)

        self.authenticator.acquire_token.assert_called_once_with(
            "https://contoso.sharepoint.com/sites/a", "client-1", "tenant-1", self.certificate
        )
        create.assert_called_once_with("token-123")
        self.assertTrue(session.closed)

    def test_session_closed_when_body_raises(self):
        self.http_session.request.return_value = _response(payload=WEB_PAYLOAD)

        with patch.object(self.factory, '_create_http_session', return_value=self.http_session):
            with self.assertRaises(RuntimeError):
                with self.factory.open_session("https://contoso.sharepoint.com/sites/a", "c", "t",
                                               self.certificate):
                    raise RuntimeError("extract failed")

        self.http_session.close.assert_called_once()

    def test_session_closed_when_validation_fails(self):
        self.http_session.request.return_value = _response(404, {}, reason="Not Found")

        with patch.object(self.factory, '_create_http_session', return_value=self.http_session):
            with self.assertRaises(SiteConnectionError):
                with self.factory.open_session("https://contoso.sharepoint.com/sites/x", "c", "t",
                                               self.certificate):
                    self.fail("body should not run")

        self.http_session.close.assert_called_once()

    def test_authentication_failure_propagates(self):
        self.authenticator.acquire_token.side_effect = AuthenticationError("bad certificate")

        with self.assertRaises(AuthenticationError):
            with self.factory.open_session("https://contoso.sharepoint.com", "c", "t", self.certificate):
                self.fail("body should not run")

    def test_http_session_has_bearer_token_and_retries(self):
        session = self.factory._create_http_session("token-abc")

        self.assertEqual(session.headers['Authorization'], 'Bearer token-abc')
        self.assertEqual(session.headers['Accept'], ODATA_JSON)
        retries = session.get_adapter("https://contoso.sharepoint.com").max_retries
        self.assertEqual(retries.total, 2)
        self.assertIn(429, retries.status_forcelist)
        session.close()


if __name__ == '__main__':
    unittest.main()
