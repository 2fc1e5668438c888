"""
Authenticated site sessions for the remote content-management API.
"""
import logging
from contextlib import contextmanager
from typing import Any, ContextManager, Dict, Iterator, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..models.errors import SiteConnectionError
from ..models.provisioning import SiteInfo
from ..security.models import ClientCertificate
from .auth_service import AppOnlyAuthenticator


ODATA_JSON = 'application/json;odata=nometadata'


class SiteSession:
    """
    An authenticated connection to one site.

    Requests are sent without a timeout: extracting or applying a large site
    can take longer than any sensible default.
    """

    request_timeout = None

    def __init__(self, site_url: str, http_session: requests.Session):
        self.site_url = site_url.rstrip('/')
        self.http_session = http_session
        self.site_info: Optional[SiteInfo] = None
        self.closed = False
        self.logger = logging.getLogger(__name__)

    def __enter__(self) -> 'SiteSession':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def web_url(self) -> str:
        return self.site_info.url if self.site_info else self.site_url

    @property
    def server_relative_url(self) -> str:
        return self.site_info.server_relative_url if self.site_info else '/'

    def validate(self) -> SiteInfo:
        """Load the site's URL and title to prove the session is usable."""
        data = self.get_json('/_api/web', params={'$select': 'Url,Title,ServerRelativeUrl'})

        if 'Url' not in data:
            raise SiteConnectionError(f"Unexpected response validating {self.site_url}")

        self.site_info = SiteInfo(
            url=data['Url'],
            title=data.get('Title', ''),
            server_relative_url=data.get('ServerRelativeUrl') or '/'
        )
        return self.site_info

    def get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        response = self.request('GET', path, params=params)
        return self._decode(response)

    def post_json(self, path: str, payload: Optional[Dict[str, Any]] = None,
                  method_override: Optional[str] = None) -> Dict[str, Any]:
        """POST a JSON body; method_override sends X-HTTP-Method (MERGE, DELETE)."""
        headers = {'Content-Type': ODATA_JSON}
        if method_override:
            headers['X-HTTP-Method'] = method_override
            headers['IF-MATCH'] = '*'

        response = self.request('POST', path, json=payload, headers=headers)
        return self._decode(response)

    def delete(self, path: str) -> None:
        self.post_json(path, method_override='DELETE')

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Send a request relative to the site URL."""
        if self.closed:
            raise SiteConnectionError(f"Session for {self.site_url} is closed")

        url = f"{self.site_url}{path}"

        try:
            response = self.http_session.request(method, url, timeout=self.request_timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise SiteConnectionError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            raise SiteConnectionError(
                f"{method} {url} returned HTTP {response.status_code}: {self._error_text(response)}",
                status_code=response.status_code
            )

        return response

    def close(self):
        """Release the underlying HTTP connections."""
        if not self.closed:
            self.http_session.close()
            self.closed = True
            self.logger.debug(f"Closed session for {self.site_url}")

    @staticmethod
    def _decode(response: requests.Response) -> Dict[str, Any]:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise SiteConnectionError(f"Invalid JSON from {response.url}: {e}") from e

    @staticmethod
    def _error_text(response: requests.Response) -> str:
        try:
            error = response.json().get('odata.error') or response.json().get('error') or {}
            message = error.get('message')
            if isinstance(message, dict):
                return message.get('value', response.reason)
            return message or response.reason
        except (ValueError, AttributeError):
            return response.reason or ''


class SessionFactory:
    """Interface for opening authenticated site sessions."""

    def open_session(self, site_url: str, client_id: str, tenant_id: str,
                     certificate: ClientCertificate) -> ContextManager[SiteSession]:
        """
        Open a validated session to a site.

        The returned context manager closes the session on exit, whether or
        not the body raised.
        """
        raise NotImplementedError


class SharePointSessionFactory(SessionFactory):
    """Opens app-only authenticated sessions against SharePoint REST."""

    def __init__(self,
                 authenticator: AppOnlyAuthenticator,
                 max_retries: int = 3,
                 backoff_factor: float = 1.0):
        self.authenticator = authenticator
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def open_session(self, site_url: str, client_id: str, tenant_id: str,
                     certificate: ClientCertificate) -> Iterator[SiteSession]:
        token = self.authenticator.acquire_token(site_url, client_id, tenant_id, certificate)
        session = SiteSession(site_url, self._create_http_session(token.token))

        try:
            session.validate()
            yield session
        finally:
            session.close()

    def _create_http_session(self, access_token: str) -> requests.Session:
        """Create a requests session with bearer auth and throttling retries."""
        session = requests.Session()

        # Throttled responses carry Retry-After, which urllib3 honours
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"],
            respect_retry_after_header=True
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            'Authorization': f'Bearer {access_token}',
            'Accept': ODATA_JSON,
        })

        return session
