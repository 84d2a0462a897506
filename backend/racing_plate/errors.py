"""Error taxonomy shared by services and HTTP handlers.

Services raise these; the handlers registered in ``register_error_handlers``
turn them into JSON responses so route functions never build error bodies
by hand.
"""

from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException


class ConfigurationError(RuntimeError):
    """Raised at startup when settings are missing or malformed."""

    def __init__(self, missing=(), invalid=None):
        self.missing = list(missing)
        self.invalid = dict(invalid or {})
        problems = []
        if self.missing:
            problems.append(f"Missing required configuration: {', '.join(self.missing)}")
        problems.extend(f"Invalid {key}: {reason}" for key, reason in self.invalid.items())
        super().__init__('; '.join(problems))


class ApiError(Exception):
    status_code = 500
    message = 'Internal server error'

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message}
        if self.details is not None:
            payload['details'] = self.details
        return payload


class ValidationError(ApiError):
    status_code = 400
    message = 'Validation Error'


class Conflict(ApiError):
    status_code = 409
    message = 'Resource already exists'


class Unauthorized(ApiError):
    status_code = 401
    message = 'Access denied'


class InvalidCredentials(Unauthorized):
    # Same message for unknown email and wrong password.
    message = 'Invalid credentials'

    def __init__(self):
        super().__init__()


class Forbidden(ApiError):
    status_code = 403
    message = 'Access denied'


class NotFound(ApiError):
    status_code = 404
    message = 'Not found'


class RateLimited(ApiError):
    status_code = 429
    message = 'Too many authentication attempts. Please try again later.'

    def __init__(self, retry_after=None):
        super().__init__()
        self.retry_after = retry_after

    def to_dict(self):
        payload = super().to_dict()
        if self.retry_after is not None:
            payload['retry_after'] = self.retry_after
        return payload


class UpstreamFailure(ApiError):
    status_code = 503
    message = 'Upstream service unavailable'


class DeliveryFailed(UpstreamFailure):
    message = 'Failed to deliver email'


class CodeError(ApiError):
    status_code = 400


class CodeNotFound(CodeError):
    message = 'No verification code found for this email'


class CodeExpired(CodeError):
    message = 'Verification code has expired'


class CodeMismatch(CodeError):
    message = 'Invalid verification code'


def register_error_handlers(flask_app):
    from racing_plate import db

    @flask_app.errorhandler(ApiError)
    def handle_api_error(exc):
        response = jsonify(exc.to_dict())
        response.status_code = exc.status_code
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            response.headers['Retry-After'] = str(exc.retry_after)
        return response

    @flask_app.errorhandler(HTTPException)
    def handle_http_error(exc):
        response = jsonify({'error': exc.name, 'message': exc.description})
        response.status_code = exc.code or 500
        return response

    @flask_app.errorhandler(Exception)
    def handle_unexpected(exc):
        db.session.rollback()
        current_app.logger.exception(f"[unhandled] {type(exc).__name__}: {exc}")
        if current_app.debug:
            body = {'error': 'Internal server error', 'message': str(exc)}
        else:
            body = {'error': 'Internal server error'}
        return jsonify(body), 500
