"""Error taxonomy shared by every blueprint.

Handlers raise these; ``register_error_handlers`` turns them into the JSON
envelope ``{"error": <message>, "kind": <stable kind>}``.
"""
from flask import jsonify, current_app
from werkzeug.exceptions import HTTPException


class FilegateError(Exception):
    kind = 'InternalError'
    status = 500
    message = 'Internal server error'

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self):
        out = {'error': self.message, 'kind': self.kind}
        if self.details is not None:
            out['details'] = self.details
        return out


class ValidationFailed(FilegateError):
    kind = 'ValidationFailed'
    status = 400
    message = 'Validation failed'


class SelfDeletionDenied(FilegateError):
    kind = 'SelfDeletion'
    status = 400
    message = 'Cannot delete your own account'


class Unauthenticated(FilegateError):
    kind = 'Unauthenticated'
    status = 401
    message = 'Authentication required'


class TokenExpired(Unauthenticated):
    kind = 'TokenExpired'
    message = 'Token expired'


class TokenInvalid(Unauthenticated):
    kind = 'TokenInvalid'
    message = 'Invalid token'


class UserNotFound(Unauthenticated):
    kind = 'UserNotFound'
    message = 'User not found'


class InsufficientRole(FilegateError):
    kind = 'InsufficientRole'
    status = 403
    message = 'Insufficient permissions'


class NotAssigned(FilegateError):
    kind = 'NotAssigned'
    status = 403
    message = 'Access denied to this file'


class NotFound(FilegateError):
    kind = 'NotFound'
    status = 404
    message = 'Not found'


class Conflict(FilegateError):
    kind = 'Conflict'
    status = 409
    message = 'Conflict'


class RateLimited(FilegateError):
    kind = 'RateLimited'
    status = 429
    message = 'Too many requests, please try again later'

    def __init__(self, message=None, retry_after=None):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self):
        out = super().to_dict()
        if self.retry_after is not None:
            out['retryAfter'] = self.retry_after
        return out


class UpstreamFailure(FilegateError):
    kind = 'UpstreamFailure'
    status = 500
    message = 'Upstream storage failure'


def _is_development():
    return current_app.config.get('ENV') == 'development'


def register_error_handlers(app):

    @app.errorhandler(FilegateError)
    def _handle_filegate_error(err):
        body = err.to_dict()
        if isinstance(err, UpstreamFailure):
            current_app.logger.error('upstream failure: %s', err.message, extra={'kind': err.kind})
            if not _is_development():
                body = {'error': UpstreamFailure.message, 'kind': err.kind}
        resp = jsonify(body)
        resp.status_code = err.status
        if isinstance(err, RateLimited) and err.retry_after is not None:
            resp.headers['Retry-After'] = str(err.retry_after)
        return resp

    @app.errorhandler(HTTPException)
    def _handle_http_error(err):
        resp = jsonify({'error': err.description, 'kind': err.name.replace(' ', '')})
        resp.status_code = err.code or 500
        return resp

    @app.errorhandler(Exception)
    def _handle_unexpected(err):
        current_app.logger.exception('unhandled error')
        body = {'error': 'Internal server error', 'kind': 'InternalError'}
        if _is_development():
            body['details'] = str(err)
        resp = jsonify(body)
        resp.status_code = 500
        return resp
