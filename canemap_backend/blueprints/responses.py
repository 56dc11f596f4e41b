"""
JSON error responses shared by the records blueprints
"""
import logging

from flask import jsonify

from canemap_backend.utils.errors import PermissionDenied, RecordsError

logger = logging.getLogger(__name__)

# Transient store or storage failures; the same request may succeed later
RETRYABLE_STATUSES = (502, 503)


def records_error_response(error, message=None):
    """Map a RecordsError to the standard error body and its HTTP status"""
    body = {
        'success': False,
        'message': message or error.message,
        'errors': {'general': [error.message]},
        'error': error.to_dict(),
        'retryable': error.http_status in RETRYABLE_STATUSES,
    }
    if isinstance(error, PermissionDenied):
        body['errors']['permission'] = [error.reason]
    return jsonify(body), error.http_status


def validation_error_response(error):
    return jsonify({
        'success': False,
        'message': 'Validation failed',
        'errors': {'general': [str(error)]}
    }), 400


def unexpected_error_response(error, message):
    logger.exception(f"{message}: {error}")
    return jsonify({
        'success': False,
        'message': message,
        'errors': {'general': [str(error)]}
    }), 500
