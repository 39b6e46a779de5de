"""Custom exceptions for the rate limiting service."""


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)


class AuthenticationError(GatewayException):
    """Raised when no client identity was presented.

    Maps to HTTP 401 Unauthorized. Raised before any store access.
    """
    status_code = 401

    def __init__(self, detail: str = "Missing client identity"):
        self.detail = detail
        super().__init__(detail)


class RateLimitExceededError(GatewayException):
    """Raised when a client's bucket holds no token.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        limit: int = 0,
        retry_after: int | None = None,
        detail: str | None = None,
    ):
        self.limit = limit
        self.remaining = 0
        self.retry_after = retry_after
        message = detail or "Rate limit exceeded."
        if retry_after:
            message += f" Retry after {retry_after} seconds."
        super().__init__(message)


class StoreUnavailableError(GatewayException):
    """Raised when Redis cannot complete a bucket transaction.

    Covers connection failures, protocol errors and cycle timeouts.
    Maps to HTTP 503 Service Unavailable when the gate fails closed.
    """
    status_code = 503

    def __init__(self, detail: str = "Rate limit store unavailable", cause: str | None = None):
        self.detail = detail
        self.cause = cause
        super().__init__(detail if cause is None else f"{detail}: {cause}")


class CorruptStateError(GatewayException):
    """Raised when a stored bucket record cannot be decoded.

    Never reaches the HTTP boundary: the transactor logs it and treats
    the record as absent.
    """

    def __init__(self, detail: str = "Corrupt bucket record"):
        self.detail = detail
        super().__init__(detail)
