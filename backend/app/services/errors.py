"""Typed failures raised by the auth service and rendered by the API layer."""


class AuthError(Exception):
    """Base auth failure carrying its wire code and HTTP status."""

    code = "AuthError"
    status_code = 400
    default_message = "Authentication request failed"

    def __init__(self, message: str | None = None, details: list[str] | None = None):
        self.message = message or self.default_message
        self.details = details or []
        super().__init__(self.message)

    @property
    def headers(self) -> dict[str, str] | None:
        return None

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(AuthError):
    code = "ValidationFailed"
    status_code = 400
    default_message = "Please check your input and try again"


class PolicyViolation(AuthError):
    code = "PolicyViolation"
    status_code = 400
    default_message = "Password does not meet security requirements"


class AlreadyExists(AuthError):
    code = "AlreadyExists"
    status_code = 400
    default_message = "An account with this email address already exists"


class InvalidCredentials(AuthError):
    code = "InvalidCredentials"
    status_code = 401
    default_message = "Email or password is incorrect"

    @property
    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class InvalidPassword(AuthError):
    code = "InvalidPassword"
    status_code = 401
    default_message = "Current password is incorrect"


class InvalidToken(AuthError):
    code = "InvalidToken"
    status_code = 401
    default_message = "Invalid or malformed token"

    @property
    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class SessionExpired(AuthError):
    code = "SessionExpired"
    status_code = 401
    default_message = "Session has expired, please sign in again"

    @property
    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": 'Bearer error="invalid_token"'}


class RateLimited(AuthError):
    code = "RateLimited"
    status_code = 429
    default_message = "Too many attempts, please try again later"

    def __init__(self, retry_after: int, message: str | None = None):
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryAfter"] = self.retry_after
        return body


class ServiceUnavailable(AuthError):
    code = "ServiceUnavailable"
    status_code = 503
    default_message = "Service temporarily unavailable, please retry"

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": "5"}
