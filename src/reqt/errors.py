"""Exception taxonomy raised by the request execution engine."""

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from .transport import HttpResponse


class Error(BaseModel):
    """A basic serializable error.

    Examples
    --------
    >>> error = Error(message="Something went wrong")
    >>> str(error)
    'ERROR: Something went wrong'
    >>> error.model_dump()
    {'message': 'Something went wrong', 'kind': None}
    """

    message: str
    kind: str | None = None

    def __str__(self) -> str:
        return "ERROR: " + self.message


class ReqtError(RuntimeError):
    """Base class for every error raised by reqt."""

    def to_error(self) -> Error:
        """Convert the exception into a serializable `Error`."""
        return Error(message=str(self), kind=type(self).__name__)


class RateLimitExceeded(ReqtError):
    """Admission denied by a rate limiter running in manual mode.

    The caller decides whether to wait, drop, or escalate. `retry_after` is the
    number of seconds until the limiter would admit a request again.
    """

    def __init__(self, message: str, *, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class RetriesExhausted(ReqtError):
    """The server kept throttling the request until the attempt budget ran out."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        last_response: "HttpResponse | None" = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_response = last_response


class AuthExpired(ReqtError):
    """The authorization token could not be refreshed.

    Terminal for the current request: the caller must re-authenticate.
    """


class PaginationError(ReqtError):
    """A response carried malformed or missing pagination metadata."""

    def __init__(self, message: str, *, page_number: int | None = None):
        super().__init__(message)
        self.page_number = page_number


class TransportError(ReqtError):
    """The transport failed to deliver the request or read the response."""


class HttpStatusError(ReqtError):
    """The server answered with a status that is neither a success nor a throttle."""

    def __init__(self, message: str, *, status_code: int, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
