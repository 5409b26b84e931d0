from enum import Enum
import logging

logger = logging.getLogger(__name__)


class StatementState(Enum):
    """
    States a statement goes through while the executor observes it.

    Attributes:
        SUBMITTED: The query request was sent and not answered yet
        POLLING: The service accepted the query asynchronously and is still running it
        SUCCEEDED: The service reported the result (terminal)
        FAILED: The service reported an error (terminal)
        TIMED_OUT: The local timeout elapsed before a terminal answer (terminal)
        CANCELLED: The caller stopped observing the statement (terminal)
    """

    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self not in (StatementState.SUBMITTED, StatementState.POLLING)
