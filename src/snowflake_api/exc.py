import json
import logging
from enum import Enum

logger = logging.getLogger(__name__)

### PEP-249 Mandated ###
# https://peps.python.org/pep-0249/#exceptions
class Error(Exception):
    """Base class for DB-API2.0 exceptions.
    `message`: An optional user-friendly error message. It should be short, actionable and stable
    `context`: Optional extra context about the error. MUST be JSON serializable
    """

    def __init__(self, message=None, context=None, *args, **kwargs):
        super().__init__(message, *args, **kwargs)
        self.message = message
        self.context = context or {}

    def __str__(self):
        return self.message

    def message_with_context(self):
        return self.message + ": " + json.dumps(self.context, default=str)


class Warning(Exception):
    pass


class InterfaceError(Error):
    pass


class DatabaseError(Error):
    pass


class InternalError(DatabaseError):
    pass


class OperationalError(DatabaseError):
    pass


class ProgrammingError(DatabaseError):
    pass


class DataError(DatabaseError):
    pass


class NotSupportedError(DatabaseError):
    pass


### Custom error classes ###
class InvalidServerResponseError(OperationalError):
    """Thrown if the server answers with a body we cannot interpret"""

    pass


class RequestError(OperationalError):
    """Thrown if there was a error during request to the server.
    Its context will have the following keys:
    "method": The REST path that failed
    "session-id": The server session id (if available)
    "query-id": The query id (if available)
    "http-code": HTTP response code to the request (if available)
    "error-code": Error code from the response body (if available)
    "original-exception": The Python level original exception
    "no-retry-reason": Why the request wasn't retried (if available)
    "attempt": current retry number / maximum number of retries
    "elapsed-seconds": time that has elapsed since first attempting the request
    """

    pass


class MaxRetryDurationError(RequestError):
    """Thrown if the next HTTP request retry would exceed the configured
    stop_after_attempts_duration
    """


class NonRecoverableNetworkError(RequestError):
    """Thrown if an HTTP code 501 is received"""


class SessionAlreadyClosedError(RequestError):
    """Thrown if a logout receives a code 404. The session manager should gracefully proceed as this is expected."""


class SessionRejectedError(RequestError):
    """Thrown if the service rejected the session token attached to a request.

    The executor catches it to invalidate the session and retry once.
    """


class AuthenticationError(OperationalError):
    """Thrown if credentials could not be produced or the login handshake failed.
    Its context may have the following keys:
    "error-code": The login error code returned by the service
    "account": The account identifier used for the handshake
    """

    def __init__(self, message=None, context=None, code=None, *args, **kwargs):
        super().__init__(message, context, *args, **kwargs)
        self.code = code


class StatementErrorKind(Enum):
    INVALID_PARAMETER = "InvalidParameter"
    TIMEOUT = "Timeout"
    REMOTE = "Remote"
    THROTTLED = "Throttled"
    CANCELLED = "Cancelled"


class StatementError(DatabaseError):
    """Base class for every failure of a single statement execution.

    `kind` tells callers which branch of the execution failed so they can decide
    on their own retry policy.
    """

    kind: StatementErrorKind

    def __init__(self, message=None, context=None, query_id=None, *args, **kwargs):
        super().__init__(message, context, *args, **kwargs)
        self.query_id = query_id


class InvalidParameterError(StatementError, ProgrammingError):
    """Thrown before any network call when a bind parameter cannot be mapped"""

    kind = StatementErrorKind.INVALID_PARAMETER


class StatementTimeoutError(StatementError):
    """Thrown when a statement did not reach a terminal state within its timeout"""

    kind = StatementErrorKind.TIMEOUT


class RemoteStatementError(StatementError):
    """Thrown if the statement moved to an error state, if for example there was a syntax
    error. `code` and `sql_state` are the values reported by the service.
    """

    kind = StatementErrorKind.REMOTE

    def __init__(
        self,
        message=None,
        context=None,
        query_id=None,
        code=None,
        sql_state=None,
        *args,
        **kwargs,
    ):
        super().__init__(message, context, query_id, *args, **kwargs)
        self.code = code
        self.sql_state = sql_state


class ThrottledError(StatementError):
    """Thrown once the service kept throttling a statement past the retry budget"""

    kind = StatementErrorKind.THROTTLED


class StatementCancelledError(StatementError):
    """Thrown when the caller cancelled the statement while it was being observed"""

    kind = StatementErrorKind.CANCELLED


class ResultErrorKind(Enum):
    DECODE = "Decode"
    ROW_COUNT_MISMATCH = "RowCountMismatch"
    FETCH = "Fetch"
    CANCELLED = "Cancelled"


class ResultError(DatabaseError):
    """Base class for failures while materializing a result set.

    A ResultError always fails the whole materialization; partial results are discarded.
    """

    kind: ResultErrorKind


class ChunkDecodeError(ResultError):
    kind = ResultErrorKind.DECODE

    def __init__(self, message=None, context=None, chunk_index=None, *args, **kwargs):
        super().__init__(message, context, *args, **kwargs)
        self.chunk_index = chunk_index


class ChunkFetchError(ResultError):
    kind = ResultErrorKind.FETCH

    def __init__(
        self,
        message=None,
        context=None,
        chunk_index=None,
        http_code=None,
        *args,
        **kwargs,
    ):
        super().__init__(message, context, *args, **kwargs)
        self.chunk_index = chunk_index
        self.http_code = http_code


class RowCountMismatchError(ResultError):
    kind = ResultErrorKind.ROW_COUNT_MISMATCH

    def __init__(
        self, message=None, context=None, expected=None, actual=None, *args, **kwargs
    ):
        super().__init__(message, context, *args, **kwargs)
        self.expected = expected
        self.actual = actual


class MaterializationCancelledError(ResultError):
    kind = ResultErrorKind.CANCELLED
