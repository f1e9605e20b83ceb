"""Typed failures raised by the session services."""


class SessionError(Exception):
    """Base class; carries the HTTP status the API layer reports."""

    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        payload = {'error': self.message}
        payload.update(self.details)
        return payload


class ValidationError(SessionError):
    """Rejected submission; nothing was written."""

    status_code = 400


class StateError(SessionError):
    """Illegal lifecycle transition; session state is unchanged."""

    status_code = 409


class NotFoundError(SessionError):
    status_code = 404


class AuthorizationError(SessionError):
    status_code = 403


class TransportError(SessionError):
    """Entity store or broadcast backend unreachable."""

    status_code = 503
