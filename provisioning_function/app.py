"""
Flask application exposing the extract-and-apply function over HTTP.
"""
from flask import Flask, request, jsonify, Response
import logging
from typing import Optional
from datetime import datetime

from .models.provisioning import FunctionResponse
from .security.auth_middleware import setup_function_key_authorization, require_function_key
from .services.config_service import ConfigService
from .services.extract_apply_service import ExtractAndApplyService
from .services.logging_service import LoggingService


FUNCTION_ROUTE = '/api/ExtractAndApply'

# status -> (error, message) for failures outside the function itself
HTTP_ERRORS = {
    404: ('Not found', 'The requested endpoint does not exist'),
    405: ('Method not allowed', 'The requested method is not allowed for this endpoint'),
    500: ('Internal server error', 'An unexpected error occurred'),
}


class ProvisioningFlaskApp:
    """Flask application hosting the ExtractAndApply function."""

    def __init__(self, config_service: ConfigService,
                 extract_apply_service: ExtractAndApplyService,
                 logging_service: Optional[LoggingService] = None):
        self.app = Flask(__name__)
        self.config_service = config_service
        self.config = config_service.get_config()
        self.extract_apply_service = extract_apply_service
        self.logging_service = logging_service
        self.logger = logging.getLogger(__name__)

        self.function_key_middleware = setup_function_key_authorization(self.app, self.config)

        self._setup_routes()
        self._setup_error_handlers()
        self._setup_security_headers()

    def _setup_routes(self):

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Liveness probe; never requires a function key."""
            health_status = {
                'status': 'healthy',
                'service': 'provisioning-function',
                'function_keys_enabled': self.function_key_middleware.enabled,
                'timestamp': datetime.now().isoformat()
            }

            if self.logging_service:
                health_status['logging'] = self.logging_service.get_health_status()

            return jsonify(health_status)

        @self.app.route(FUNCTION_ROUTE, methods=['POST'])
        @require_function_key
        def extract_and_apply():
            """Copy the template of sourceUrl onto targetUrl."""
            return self._to_http_response(self.extract_apply_service.handle(request.get_data()))

    @staticmethod
    def _to_http_response(result: FunctionResponse):
        """
        Render a FunctionResponse.

        Success is an empty 200, a bad request is the plain-text hint, and a
        pipeline failure is JSON carrying the stage label and the full message.
        """
        if result.is_success:
            return Response(status=200)

        if result.status_code == 400:
            return Response(result.body, status=400, mimetype='text/plain')

        return jsonify({'error': result.error, 'message': result.body}), result.status_code

    def _setup_error_handlers(self):
        for status_code, (error, message) in HTTP_ERRORS.items():
            self.app.register_error_handler(status_code, self._json_error_handler(status_code, error, message))

    def _json_error_handler(self, status_code: int, error: str, message: str):
        def handler(exc):
            if status_code >= 500:
                self.logger.error(f"Unhandled error serving {request.path}: {exc}")
            return jsonify({'error': error, 'message': message}), status_code
        return handler

    def _setup_security_headers(self):

        @self.app.after_request
        def add_security_headers(response):
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
            response.headers['X-Content-Type-Options'] = 'nosniff'
            response.headers['X-Frame-Options'] = 'DENY'
            response.headers['Referrer-Policy'] = 'no-referrer'
            response.headers['Cache-Control'] = 'no-store'
            response.headers.pop('Server', None)
            return response

    def run(self, host: str = '0.0.0.0', port: Optional[int] = None, debug: bool = False):
        """Run the Flask development server; use create_app() behind a WSGI server instead."""
        port = port or self.config.api_port
        self.logger.info(f"Serving {FUNCTION_ROUTE} on http://{host}:{port}")
        self.app.run(host=host, port=port, debug=debug)

    def get_app(self) -> Flask:
        return self.app
