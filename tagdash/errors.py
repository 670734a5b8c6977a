"""
Error types shared by the remote clients, the tag store and the HTTP layer.

Every failure the dashboard can surface to a user maps onto one of these
classes; the blueprints never inspect raw ``requests`` or SQLAlchemy errors.
"""
import logging

from flask import jsonify, redirect, request, url_for
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)

TOKEN_EXPIRED_MESSAGE = 'Google API token expired'


class DashboardError(Exception):
    """Base class for errors reported to the user."""

    status_code = 500

    def __init__(self, message, code='DASHBOARD_ERROR', details=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self):
        payload = {
            'success': False,
            'code': self.code,
            'message': self.message,
        }
        if self.details:
            payload['details'] = self.details
        return payload


class CredentialExpiredError(DashboardError):
    """The provider token is missing, expired or lacks the needed scope."""

    status_code = 401

    def __init__(self, message=TOKEN_EXPIRED_MESSAGE):
        super().__init__(message, code='CREDENTIAL_EXPIRED')


class RemoteServiceError(DashboardError):
    status_code = 502

    def __init__(self, message, status=None):
        super().__init__(message, code='REMOTE_SERVICE_ERROR', details={'status': status} if status else None)
        self.status = status


class StoreError(DashboardError):
    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message, code='STORE_ERROR', details=details)


class ValidationError(DashboardError):
    status_code = 400

    def __init__(self, message, field=None):
        super().__init__(message, code='VALIDATION_ERROR', details={'field': field} if field else None)
        self.field = field


def _wants_json():
    best = request.accept_mimetypes.best_match(['application/json', 'text/html'])
    return request.is_json or best != 'text/html' or request.method != 'GET'


def register_error_handlers(app):
    @app.errorhandler(CredentialExpiredError)
    def handle_credential_expired(error):
        logger.warning("Credential expired on %s %s", request.method, request.path)
        if not _wants_json():
            return redirect(url_for('auth.login'))
        payload = error.to_dict()
        payload['redirect'] = url_for('auth.login')
        return jsonify(payload), error.status_code

    @app.errorhandler(DashboardError)
    def handle_dashboard_error(error):
        if error.status_code >= 500:
            logger.warning("%s on %s %s: %s", error.code, request.method, request.path, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        return jsonify({
            'success': False,
            'code': error.name.upper().replace(' ', '_'),
            'message': error.description,
        }), error.code
