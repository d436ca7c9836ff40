"""
Exceptions Module - QR Rollcall Attendance System

Typed errors raised by the session lifecycle and admission control.
Admission rejections carry an ``error_type`` code so that callers can render
a specific message ("already submitted" vs "expired code").
"""


class RollcallError(Exception):
    """Base class for all attendance core errors."""

    error_type = 'system_error'
    default_message = 'An error occurred'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class EntropyUnavailable(RollcallError):
    """The secure random source could not be read."""

    error_type = 'entropy_unavailable'
    default_message = 'Secure random source is unavailable'


class PersistenceError(RollcallError):
    """A store read or write failed."""

    error_type = 'database_error'
    default_message = 'Failed to access attendance storage'


class InvalidState(RollcallError):
    """An operation was attempted in a state that does not allow it."""

    error_type = 'invalid_state'
    default_message = 'Operation not allowed in the current session state'


class AdmissionRejected(RollcallError):
    """Expected, user-facing rejection of an attendance claim."""

    error_type = 'rejected'
    default_message = 'Attendance claim rejected'


class SessionNotFound(AdmissionRejected):
    error_type = 'session_not_found'
    default_message = 'Attendance session not found'


class SessionClosed(AdmissionRejected):
    error_type = 'session_closed'
    default_message = 'This attendance session has been closed'


class TokenExpiredOrInvalid(AdmissionRejected):
    error_type = 'token_expired'
    default_message = 'This QR code has expired or is invalid. Please scan the latest code.'


class DuplicateSubmission(AdmissionRejected):
    error_type = 'duplicate_submission'
    default_message = 'You have already submitted attendance for this session'
