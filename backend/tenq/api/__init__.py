"""Response envelope shared by every endpoint.

Success: ``{"ok": true, "data": ..., "request_id": ...}``
Failure: ``{"ok": false, "error": {"code", "message", "details"}, "request_id": ...}``
"""
from flask import g, jsonify, current_app
from sqlalchemy.exc import OperationalError

from tenq import db
from tenq.errors import ErrorCodes, ServiceUnavailable, TenQError
from tenq.utils import new_request_id


def request_id():
    if 'request_id' not in g:
        g.request_id = new_request_id()
    return g.request_id


def success(data, status=200):
    return jsonify({'ok': True, 'data': data, 'request_id': request_id()}), status


def failure(error: TenQError):
    return jsonify({'ok': False, 'error': error.to_dict(), 'request_id': request_id()}), error.status_code


def register_error_handlers(flask_app):

    @flask_app.errorhandler(TenQError)
    def handle_tenq_error(exc):
        level = current_app.logger.error if exc.retryable else current_app.logger.warning
        level(f"[request-error] id={request_id()} code={exc.code} message={exc.message}")
        return failure(exc)

    @flask_app.errorhandler(OperationalError)
    def handle_storage_unavailable(exc):
        db.session.rollback()
        current_app.logger.error(f"[storage-unavailable] id={request_id()} error={exc.orig}")
        return failure(ServiceUnavailable(ErrorCodes.SERVICE_UNAVAILABLE, 'Storage is temporarily unavailable; retry'))
