"""
Error types and the JSON response envelope.

Every endpoint answers with ``{success, data?, error?, message?}``. Domain
code raises one of the exceptions below; the handlers registered by
``register_error_handlers`` turn them into an envelope with the matching
HTTP status.
"""

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class OrderSpotError(Exception):
    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(OrderSpotError):
    status_code = 400


class AuthenticationError(OrderSpotError):
    status_code = 401


class PermissionDenied(OrderSpotError):
    status_code = 403


class NotFoundError(OrderSpotError):
    status_code = 404


class ConflictError(OrderSpotError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    """A status change that the lifecycle tables do not allow"""


def success_response(data=None, status=200, message=None):
    body = {'success': True}
    if data is not None:
        body['data'] = data
    if message:
        body['message'] = message
    return jsonify(body), status


def error_response(error, status, details=None):
    body = {'success': False, 'error': error}
    if details:
        body['details'] = details
    return jsonify(body), status


def require_fields(data, *fields, message=None):
    """Raise ValidationError unless every field is present and truthy"""
    missing = [f for f in fields if not data.get(f)]
    if missing:
        raise ValidationError(message or f"Missing field: {missing[0]}")


def register_error_handlers(app):
    @app.errorhandler(OrderSpotError)
    def handle_domain_error(exc):
        if exc.status_code >= 500:
            logger.error('%s: %s', type(exc).__name__, exc.message)
        else:
            logger.warning('%s (%s): %s', type(exc).__name__, exc.status_code, exc.message)
        return error_response(exc.message, exc.status_code, exc.details)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return error_response(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        logger.exception('Unhandled error')
        return error_response('Internal server error', 500)
