"""
App-only authentication against the Microsoft identity platform.

Tokens are acquired with the client-credentials grant, proving possession of
the client certificate through a signed JWT assertion (RFC 7523).
"""
import base64
import json
import logging
import time
import uuid
from typing import Optional
from urllib.parse import urlparse

import requests
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from ..models.errors import AuthenticationError
from ..security.models import AccessToken, ClientCertificate


CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 600
TOKEN_REQUEST_TIMEOUT_SECONDS = 30


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def resource_for_site(site_url: str) -> str:
    """Return the scope for a site, e.g. ``https://contoso.sharepoint.com/.default``."""
    parsed = urlparse(site_url)
    if not parsed.scheme or not parsed.netloc:
        raise AuthenticationError(f"Cannot derive a resource from site URL: {site_url}")
    return f"{parsed.scheme}://{parsed.netloc}/.default"


class AppOnlyAuthenticator:
    """Acquires app-only access tokens for a client id, tenant and certificate."""

    def __init__(self,
                 authority_host: str = "https://login.microsoftonline.com",
                 http_session: Optional[requests.Session] = None):
        self.authority_host = authority_host.rstrip("/")
        # Injected for tests; otherwise every token request gets its own session
        self.http_session = http_session
        self.logger = logging.getLogger(__name__)

    def token_endpoint(self, tenant_id: str) -> str:
        return f"{self.authority_host}/{tenant_id}/oauth2/v2.0/token"

    def acquire_token(self, site_url: str, client_id: str, tenant_id: str,
                      certificate: ClientCertificate) -> AccessToken:
        """
        Acquire an access token for the site's host.

        Raises:
            AuthenticationError: If identity values are missing, the
                certificate has no private key or the identity provider
                rejects the request
        """
        if not client_id or not tenant_id:
            raise AuthenticationError("CLIENT_ID and TENANT must be configured for app-only authentication")

        if not certificate.has_private_key:
            raise AuthenticationError(
                f"Certificate {certificate.thumbprint} has no private key; cannot sign the client assertion"
            )

        scope = resource_for_site(site_url)
        endpoint = self.token_endpoint(tenant_id)
        assertion = self.build_client_assertion(client_id, endpoint, certificate)

        self.logger.debug(f"Requesting app-only token for {scope} from {endpoint}")

        form = {
            'grant_type': 'client_credentials',
            'client_id': client_id,
            'scope': scope,
            'client_assertion_type': CLIENT_ASSERTION_TYPE,
            'client_assertion': assertion,
        }

        try:
            response = self._post_form(endpoint, form)
        except requests.exceptions.RequestException as e:
            raise AuthenticationError(f"Token request to {endpoint} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code != 200 or 'access_token' not in payload:
            description = payload.get('error_description') or payload.get('error') or response.text
            raise AuthenticationError(
                f"Token request rejected (HTTP {response.status_code}): {description}"
            )

        expires_in = int(payload.get('expires_in', 3600))
        return AccessToken(
            token=payload['access_token'],
            expires_at=time.time() + expires_in,
            resource=scope
        )

    def _post_form(self, endpoint: str, form: dict) -> requests.Response:
        if self.http_session is not None:
            return self.http_session.post(endpoint, data=form, timeout=TOKEN_REQUEST_TIMEOUT_SECONDS)

        with requests.Session() as http:
            return http.post(endpoint, data=form, timeout=TOKEN_REQUEST_TIMEOUT_SECONDS)

    def build_client_assertion(self, client_id: str, audience: str,
                               certificate: ClientCertificate) -> str:
        """Build an RS256-signed JWT identifying the client by its certificate."""
        now = int(time.time())

        header = {
            'alg': 'RS256',
            'typ': 'JWT',
            'x5t': _b64url(bytes.fromhex(certificate.thumbprint)),
        }
        claims = {
            'aud': audience,
            'iss': client_id,
            'sub': client_id,
            'jti': str(uuid.uuid4()),
            'nbf': now,
            'exp': now + ASSERTION_LIFETIME_SECONDS,
        }

        signing_input = ".".join([
            _b64url(json.dumps(header, separators=(',', ':')).encode()),
            _b64url(json.dumps(claims, separators=(',', ':')).encode()),
        ])

        signature = certificate.private_key.sign(
            signing_input.encode('ascii'),
            padding.PKCS1v15(),
            hashes.SHA256()
        )

        return f"{signing_input}.{_b64url(signature)}"
