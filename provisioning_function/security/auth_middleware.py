"""
Function-level key authorization for the HTTP surface.
"""
import hmac
import logging
from functools import wraps
from flask import request, g, jsonify
from typing import Iterable, Optional
from urllib.parse import parse_qs


FUNCTION_KEY_HEADER = 'x-functions-key'
FUNCTION_KEY_QUERY_PARAM = 'code'


class FunctionKeyMiddleware:
    """WSGI middleware that checks the caller's function key."""

    def __init__(self, app, function_keys: Iterable[str]):
        """Initialize the middleware and wrap the Flask app."""
        self.app = app
        self.function_keys = [key for key in function_keys if key]
        self.logger = logging.getLogger(__name__)

        # Wrap the Flask app
        self.wsgi_app = app.wsgi_app
        app.wsgi_app = self

    @property
    def enabled(self) -> bool:
        return bool(self.function_keys)

    def __call__(self, environ, start_response):
        """WSGI application call."""
        presented_key = self._extract_function_key(environ)

        environ['function_key.presented'] = presented_key is not None
        environ['function_key.authorized'] = (
            not self.enabled or self.is_valid_key(presented_key)
        )

        if self.enabled and presented_key is not None and not environ['function_key.authorized']:
            self.logger.warning(
                f"Rejected function key for {environ.get('REQUEST_METHOD')} {environ.get('PATH_INFO')}"
            )

        return self.wsgi_app(environ, start_response)

    def is_valid_key(self, presented_key: Optional[str]) -> bool:
        """Compare a presented key against every configured key."""
        if not presented_key:
            return False

        # Check all keys so timing does not reveal which one matched
        matched = False
        for key in self.function_keys:
            if hmac.compare_digest(presented_key.encode(), key.encode()):
                matched = True
        return matched

    def _extract_function_key(self, environ) -> Optional[str]:
        """Extract the function key from the header or the query string."""
        header_key = environ.get('HTTP_X_FUNCTIONS_KEY')
        if header_key:
            return header_key

        query = parse_qs(environ.get('QUERY_STRING', ''))
        codes = query.get(FUNCTION_KEY_QUERY_PARAM)
        if codes:
            return codes[0]

        return None


def setup_function_key_authorization(app, config):
    """Set up function-level key authorization for a Flask app."""
    middleware = FunctionKeyMiddleware(app, config.function_keys)
    logger = logging.getLogger(__name__)

    if not middleware.enabled:
        logger.warning("No function keys configured, function key authorization is disabled")

    @app.before_request
    def authorize_request():
        """Authorize the request using its function key."""
        # Skip authorization for health check
        if request.endpoint == 'health_check':
            g.authorized = True
            return

        # Unknown path or method: let routing answer with 404/405
        if request.endpoint is None:
            g.authorized = False
            return

        if request.environ.get('function_key.authorized', False):
            g.authorized = True
            return

        g.authorized = False
        if not request.environ.get('function_key.presented'):
            return jsonify({
                'error': 'Function key required',
                'message': f'Pass a function key in the {FUNCTION_KEY_HEADER} header or the '
                           f'{FUNCTION_KEY_QUERY_PARAM} query parameter'
            }), 401

        return jsonify({
            'error': 'Unauthorized',
            'message': 'Invalid function key'
        }), 401

    return middleware


def require_function_key(f):
    """Decorator to require an authorized function key for specific endpoints."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not getattr(g, 'authorized', False):
            return jsonify({
                'error': 'Unauthorized',
                'message': 'This endpoint requires a function key'
            }), 401
        return f(*args, **kwargs)
    return decorated_function
