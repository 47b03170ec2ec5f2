"""Error taxonomy for the certificate fetch workflow.

Classified errors (``FetchError`` subclasses, plus the builtin ``OSError`` for
filesystem failures) are operator mistakes or environment problems and are
reported as a single line. ``UnexpectedError`` wraps everything else.
"""


class FetchError(Exception):
    """Base class for classified fetch failures."""

    category = "fetch_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: list[str] | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message)


class ConfigurationError(FetchError):
    """Raised for inconsistent or invalid settings, before any network call."""

    category = "configuration"


class AuthenticationError(FetchError):
    """Raised when the backend rejects the token as invalid or expired."""

    category = "authentication"


class AuthorizationError(FetchError):
    """Raised when the token is valid but not permitted on the requested path."""

    category = "authorization"


class ValidationError(FetchError):
    """Raised when the backend rejects the request (names, SANs, TTL, unknown role)."""

    category = "validation"


class BackendUnavailable(FetchError):
    """Raised on network failures, timeouts, rate limiting and 5xx responses."""

    category = "backend_unavailable"


class MalformedResponse(FetchError):
    """Raised when a backend response does not have the expected shape."""

    category = "malformed_response"


class UnexpectedError(Exception):
    """Raised for failures outside the classified taxonomy."""

    category = "unexpected"
