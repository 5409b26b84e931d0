"""
Classification of service answers into the branches the executor acts on.

The service does not publish which of its codes are retryable. The sets below are
the observed behaviour; they live in one replaceable object so they can be tuned
without touching the call sites.
"""

import logging
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from snowflake_api.backend.constants import (
    MASTER_TOKEN_EXPIRED_CODE,
    MASTER_TOKEN_INVALID_CODE,
    MASTER_TOKEN_NOT_FOUND_CODE,
    SESSION_EXPIRED_CODE,
    SESSION_GONE_CODE,
)
from snowflake_api.backend.models import QueryResponse

logger = logging.getLogger(__name__)


class ResponseClass(Enum):
    SUCCESS = "success"
    IN_PROGRESS = "in_progress"
    SESSION_REJECTED = "session_rejected"
    THROTTLED = "throttled"
    MALFORMED = "malformed"
    REMOTE_ERROR = "remote_error"


DEFAULT_SESSION_REJECTED_CODES = frozenset(
    [
        SESSION_GONE_CODE,
        SESSION_EXPIRED_CODE,
        MASTER_TOKEN_NOT_FOUND_CODE,
        MASTER_TOKEN_EXPIRED_CODE,
        MASTER_TOKEN_INVALID_CODE,
    ]
)
DEFAULT_SESSION_REJECTED_STATUSES = frozenset([401])
DEFAULT_THROTTLE_STATUSES = frozenset([429, 503])
DEFAULT_MALFORMED_STATUSES = frozenset([400, 404, 405, 413, 415, 422])


class ErrorPolicy:
    """
    Decides how a failed request or an unsuccessful response is handled.

    :param session_rejected_codes:
        Body codes meaning the session token is no longer accepted. The executor
        invalidates the session and retries once.

    :param session_rejected_statuses:
        HTTP statuses with the same meaning. 403 is left out: the service answers it
        for missing privileges, which a new session does not fix.

    :param throttle_codes:
        Body codes meaning the service asks the client to slow down.

    :param throttle_statuses:
        HTTP statuses with the same meaning, once the transport gave up retrying them.

    :param malformed_statuses:
        HTTP statuses meaning the request itself is wrong. Never retried.

    :param max_throttle_retries:
        Attempts the executor makes after a throttled answer before failing.

    :param throttle_backoff_base, throttle_backoff_factor, throttle_backoff_max:
        Wait before the n-th throttle retry is ``base * factor ** n`` capped at ``max``.
    """

    def __init__(
        self,
        session_rejected_codes: Iterable[str] = DEFAULT_SESSION_REJECTED_CODES,
        session_rejected_statuses: Iterable[int] = DEFAULT_SESSION_REJECTED_STATUSES,
        throttle_codes: Iterable[str] = (),
        throttle_statuses: Iterable[int] = DEFAULT_THROTTLE_STATUSES,
        malformed_statuses: Iterable[int] = DEFAULT_MALFORMED_STATUSES,
        max_throttle_retries: int = 5,
        throttle_backoff_base: float = 1.0,
        throttle_backoff_factor: float = 2.0,
        throttle_backoff_max: float = 30.0,
    ):
        self.session_rejected_codes: FrozenSet[str] = frozenset(
            str(c) for c in session_rejected_codes
        )
        self.session_rejected_statuses: FrozenSet[int] = frozenset(
            session_rejected_statuses
        )
        self.throttle_codes: FrozenSet[str] = frozenset(str(c) for c in throttle_codes)
        self.throttle_statuses: FrozenSet[int] = frozenset(throttle_statuses)
        self.malformed_statuses: FrozenSet[int] = frozenset(malformed_statuses)
        self.max_throttle_retries = max_throttle_retries
        self.throttle_backoff_base = throttle_backoff_base
        self.throttle_backoff_factor = throttle_backoff_factor
        self.throttle_backoff_max = throttle_backoff_max

    def is_session_rejected_code(self, code: Optional[str]) -> bool:
        return code is not None and str(code) in self.session_rejected_codes

    def classify_status(self, http_code: Optional[int]) -> ResponseClass:
        """Classify a request that failed with an HTTP error status."""
        if http_code in self.session_rejected_statuses:
            return ResponseClass.SESSION_REJECTED
        if http_code in self.throttle_statuses:
            return ResponseClass.THROTTLED
        if http_code in self.malformed_statuses:
            return ResponseClass.MALFORMED
        return ResponseClass.REMOTE_ERROR

    def classify_response(self, response: QueryResponse) -> ResponseClass:
        """Classify a query response that was delivered with a 2xx status."""
        if response.is_in_progress:
            return ResponseClass.IN_PROGRESS
        if response.success:
            return ResponseClass.SUCCESS

        code = response.error.code if response.error else response.code
        if self.is_session_rejected_code(code):
            return ResponseClass.SESSION_REJECTED
        if code is not None and str(code) in self.throttle_codes:
            return ResponseClass.THROTTLED
        return ResponseClass.REMOTE_ERROR

    def throttle_backoff(self, attempt: int) -> float:
        """Seconds to wait before throttle retry number ``attempt`` (starting at 0)."""
        proposed = self.throttle_backoff_base * (self.throttle_backoff_factor**attempt)
        return min(proposed, self.throttle_backoff_max)
