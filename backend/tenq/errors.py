"""Stable error codes and the exceptions that carry them.

Services raise these; the HTTP layer turns them into the response envelope.
Never invent ad-hoc error strings for the ``code`` field.
"""


class ErrorCodes:
    ATTEMPT_ALREADY_COMPLETED = 'ATTEMPT_ALREADY_COMPLETED'
    ATTEMPT_NOT_FOUND = 'ATTEMPT_NOT_FOUND'
    INVALID_STATE_TRANSITION = 'INVALID_STATE_TRANSITION'
    QUESTION_NOT_FOUND = 'QUESTION_NOT_FOUND'
    QUIZ_NOT_AVAILABLE = 'QUIZ_NOT_AVAILABLE'
    QUIZ_NOT_FOUND = 'QUIZ_NOT_FOUND'
    NOT_AUTHORIZED = 'NOT_AUTHORIZED'
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    NO_VIEWER_SCORE = 'NO_VIEWER_SCORE'
    SERVICE_UNAVAILABLE = 'SERVICE_UNAVAILABLE'


class TenQError(Exception):
    status_code = 400
    retryable = False

    def __init__(self, code, message, details=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'code': self.code, 'message': self.message}
        if self.details is not None:
            payload['details'] = self.details
        return payload


class NotFound(TenQError):
    """Absent, or present but owned by someone else. Terminal."""
    status_code = 404


class StateConflict(TenQError):
    """The client's view of the attempt is stale; it must re-fetch state."""
    status_code = 409


class ValidationFailed(TenQError):
    status_code = 400


class NotAuthorized(TenQError):
    status_code = 401


class ServiceUnavailable(TenQError):
    status_code = 503
    retryable = True


def attempt_not_found():
    return NotFound(ErrorCodes.ATTEMPT_NOT_FOUND, 'Attempt not found')


def validation_error(message, details=None):
    return ValidationFailed(ErrorCodes.VALIDATION_ERROR, message, details)
