# ==========================================================
#                  EXCEPTIONS
# ==========================================================
# Every error a route can raise on purpose. create_app() renders them as
# {"error": message} with the matching status code.


class LendingException(Exception):
    """Base application exception"""
    status_code = 400

    def __init__(self, message=None, status_code=None, payload=None):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or "Request failed"
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        body = dict(self.payload or {})
        body["error"] = self.message
        return body


class ValidationError(LendingException):
    """Invalid input"""
    status_code = 400


class AuthenticationError(LendingException):
    """Please login (10001)"""
    status_code = 401


class PermissionDeniedError(LendingException):
    """You do not have required permission (10002)"""
    status_code = 403


class NotFoundError(LendingException):
    """Not found"""
    status_code = 404


class ConflictError(LendingException):
    """Already exists"""
    status_code = 409


class PreconditionFailedError(LendingException):
    """Precondition failed"""
    status_code = 412


class InvalidTransitionError(LendingException):
    """Invalid status change"""
    status_code = 400


class PaymentDeclinedError(LendingException):
    """Payment declined"""
    status_code = 400


class RateLimitExceededError(LendingException):
    """Rate limit exceeded"""
    status_code = 429


class ConfigurationError(LendingException):
    """Service is not configured"""
    status_code = 500


class ExternalServiceError(LendingException):
    """Upstream service failed"""
    status_code = 502
