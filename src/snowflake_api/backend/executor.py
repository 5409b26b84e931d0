import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set

from snowflake_api.backend.constants import (
    ALLOWED_STATEMENT_PARAMETERS_TO_DEFAULT_VALUES_MAP,
    QUERY_RESULT_PATH,
)
from snowflake_api.backend.error_policy import ErrorPolicy, ResponseClass
from snowflake_api.backend.models import QueryRequest, QueryResponse, ServiceError
from snowflake_api.backend.rest_client import SnowflakeRestClient
from snowflake_api.backend.session_manager import Session, SessionManager
from snowflake_api.backend.types import StatementState
from snowflake_api.cloudfetch.downloader import ChunkDescriptor
from snowflake_api.conversion import SqlTypeConverter
from snowflake_api.exc import (
    AuthenticationError,
    ChunkFetchError,
    InvalidServerResponseError,
    RemoteStatementError,
    RequestError,
    SessionRejectedError,
    StatementCancelledError,
    StatementError,
    StatementTimeoutError,
    ThrottledError,
)
from snowflake_api.parameters.native import TParameterSequence, to_bindings
from snowflake_api.result_assembler import ResultAssembler, descriptors_from_response
from snowflake_api.result_set import ResultSet

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_BASE_SECS = 0.1
DEFAULT_POLL_BACKOFF_FACTOR = 2.0
DEFAULT_POLL_INTERVAL_MAX_SECS = 5.0
DEFAULT_STATEMENT_TIMEOUT_SECS = 3600.0


def _filter_statement_parameters(
    statement_parameters: Optional[Dict[str, Any]],
) -> Dict[str, str]:
    """
    Filter the statement-level parameters sent along with a query.

    Only the parameters in ``ALLOWED_STATEMENT_PARAMETERS_TO_DEFAULT_VALUES_MAP``
    can be set per statement. Key comparison is case-insensitive; the returned
    dictionary has upper-case keys and string values. Unsupported keys are
    dropped with a warning.
    """

    if not statement_parameters:
        return {}

    filtered_statement_parameters = {}
    ignored_parameters: Set[str] = set()

    for key, value in statement_parameters.items():
        if key.upper() in ALLOWED_STATEMENT_PARAMETERS_TO_DEFAULT_VALUES_MAP:
            filtered_statement_parameters[key.upper()] = str(value)
        else:
            ignored_parameters.add(key)

    if ignored_parameters:
        logger.warning(
            "Some statement parameters were ignored because they are not supported: %s",
            ignored_parameters,
        )
        logger.warning(
            "Supported statement parameters are: %s",
            list(ALLOWED_STATEMENT_PARAMETERS_TO_DEFAULT_VALUES_MAP.keys()),
        )

    return filtered_statement_parameters


@dataclass(frozen=True)
class StatementRequest:
    """
    One statement to execute.

    Attributes:
        sql (str): SQL text.
        parameters (list): Positional bind parameters, primitives or typed parameters.
        timeout (float): Seconds the statement may take to reach a terminal state.
            None uses the executor default.
        context (dict): Statement-level parameters such as ``QUERY_TAG``.
    """

    sql: str
    parameters: Optional[TParameterSequence] = None
    timeout: Optional[float] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PollPolicy:
    """Bounded exponential backoff between result polls."""

    base: float = DEFAULT_POLL_INTERVAL_BASE_SECS
    factor: float = DEFAULT_POLL_BACKOFF_FACTOR
    maximum: float = DEFAULT_POLL_INTERVAL_MAX_SECS

    def interval(self, attempt: int) -> float:
        return min(self.base * (self.factor**attempt), self.maximum)


@dataclass(frozen=True)
class StatementHandle:
    """A statement the service accepted, identified by its query id."""

    query_id: str
    submitted_at: float
    result_url: str
    poll_policy: PollPolicy = field(default_factory=PollPolicy)


class _Execution:
    """Mutable bookkeeping of one ``execute`` call."""

    def __init__(
        self,
        deadline: Optional[float],
        cancel_event: Optional[threading.Event],
    ):
        self.deadline = deadline
        self.cancel_event = cancel_event or threading.Event()
        self.query_id: Optional[str] = None
        self.session: Optional[Session] = None
        # One session recovery per statement, shared by submission and polling
        self.session_recovered = False
        self.throttle_attempts = 0


class StatementPoller:
    """
    Observes an accepted statement until it reaches a terminal state.

    The poller moves from SUBMITTED to POLLING and then to exactly one of
    SUCCEEDED, FAILED, TIMED_OUT or CANCELLED. Each ``step`` waits for the current
    poll interval and sends one poll.
    """

    def __init__(
        self,
        executor: "StatementExecutor",
        handle: StatementHandle,
        execution: _Execution,
    ):
        self._executor = executor
        self.handle = handle
        self._execution = execution
        self.state = StatementState.SUBMITTED
        self.polls = 0
        self.response: Optional[QueryResponse] = None

    def step(self) -> StatementState:
        if self.state.is_terminal:
            return self.state
        self.state = StatementState.POLLING

        try:
            self._executor._wait(
                self._execution, self.handle.poll_policy.interval(self.polls)
            )
            self.polls += 1
            logger.debug(
                "Polling statement %s, attempt %s", self.handle.query_id, self.polls
            )
            response = self._executor._request(
                self._execution,
                lambda session: self._executor._rest_client.get_query_result(
                    session.token, self.handle.result_url
                ),
            )
        except StatementTimeoutError:
            self.state = StatementState.TIMED_OUT
            raise
        except StatementCancelledError:
            self.state = StatementState.CANCELLED
            raise
        except Exception:
            self.state = StatementState.FAILED
            raise

        if not response.is_in_progress:
            self.response = response
            self.state = StatementState.SUCCEEDED
        return self.state

    def run(self) -> QueryResponse:
        """
        Poll until the statement succeeded.

        Raises:
            RemoteStatementError: If the service reported the statement failed
            StatementTimeoutError: If the timeout elapsed first
            StatementCancelledError: If the cancel event was set
        """
        while self.step() is not StatementState.SUCCEEDED:
            pass
        return self.response


class StatementExecutor:
    """
    Runs statements against the session owned by a SessionManager.

    Statements are submitted asynchronously. A statement the service answers
    inline is materialized straight away; one still running is polled with
    bounded exponential backoff until it succeeds, fails, times out or the
    caller cancels it. Cancellation only stops observing the statement; no
    abort request is sent to the service.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        rest_client: SnowflakeRestClient,
        assembler: ResultAssembler,
        error_policy: Optional[ErrorPolicy] = None,
        poll_interval_base: float = DEFAULT_POLL_INTERVAL_BASE_SECS,
        poll_backoff_factor: float = DEFAULT_POLL_BACKOFF_FACTOR,
        poll_interval_max: float = DEFAULT_POLL_INTERVAL_MAX_SECS,
        default_timeout: Optional[float] = DEFAULT_STATEMENT_TIMEOUT_SECS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_manager = session_manager
        self._rest_client = rest_client
        self._assembler = assembler
        self.error_policy = error_policy or rest_client.error_policy
        self.poll_policy = PollPolicy(
            poll_interval_base, poll_backoff_factor, poll_interval_max
        )
        self.default_timeout = default_timeout
        self._clock = clock

    def execute(
        self,
        request: StatementRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> ResultSet:
        """
        Execute ``request`` and return its materialized result.

        Raises:
            InvalidParameterError: Before any network call, if a bind parameter is unsupported
            RemoteStatementError: If the service rejected or failed the statement
            ThrottledError: If the service kept throttling past the retry budget
            StatementTimeoutError: If the statement did not finish within its timeout
            StatementCancelledError: If ``cancel_event`` was set while waiting
            AuthenticationError: If the session could not be recovered
            ResultError: If the result could not be materialized
        """
        bindings = to_bindings(request.parameters)
        statement_parameters = _filter_statement_parameters(request.context)

        timeout = request.timeout
        if timeout is None:
            timeout = self.default_timeout
        submitted_at = self._clock()
        execution = _Execution(
            deadline=submitted_at + timeout if timeout is not None else None,
            cancel_event=cancel_event,
        )

        # Fixed for the statement so a resubmission is deduplicated by the service
        request_id = str(uuid.uuid4())

        def submit(session: Session):
            body = QueryRequest(
                sql_text=request.sql,
                sequence_id=session.next_sequence_id(),
                bindings=bindings,
                parameters=statement_parameters or None,
            ).to_dict()
            return self._rest_client.submit_query(session.token, body, request_id)

        logger.debug("Submitting statement, request id %s", request_id)
        response = self._request(execution, submit)
        execution.query_id = response.query_id

        handle = StatementHandle(
            query_id=response.query_id,
            submitted_at=submitted_at,
            result_url=response.get_result_url
            or QUERY_RESULT_PATH.format(response.query_id),
            poll_policy=self.poll_policy,
        )

        if response.is_in_progress:
            logger.debug("Statement %s is running, polling", handle.query_id)
            response = StatementPoller(self, handle, execution).run()

        logger.debug(
            "Statement %s succeeded with %s rows in %s remote chunks",
            handle.query_id,
            response.total,
            len(response.chunks),
        )
        return self._assembler.materialize(
            descriptors_from_response(response),
            response.columns,
            response.total,
            converter=self._converter(execution.session),
            query_id=handle.query_id,
            refresher=lambda index: self.refresh_chunk(handle, index),
            cancel_event=cancel_event,
        )

    def refresh_chunk(self, handle: StatementHandle, index: int) -> ChunkDescriptor:
        """
        Re-read the result of ``handle`` and return fresh access to chunk ``index``.

        Raises:
            ChunkFetchError: If the result no longer lists the chunk
        """
        logger.debug("Refreshing access to chunk %s of %s", index, handle.query_id)
        execution = _Execution(deadline=None, cancel_event=None)
        execution.query_id = handle.query_id
        response = self._request(
            execution,
            lambda session: self._rest_client.get_query_result(
                session.token, handle.result_url
            ),
        )
        descriptors = descriptors_from_response(response)
        if response.is_in_progress or not 0 <= index < len(descriptors):
            raise ChunkFetchError(
                "Result of query {} no longer lists chunk {}".format(
                    handle.query_id, index
                ),
                {"query-id": handle.query_id, "chunk-index": index},
                chunk_index=index,
            )
        return descriptors[index]

    def _request(
        self,
        execution: _Execution,
        call: Callable[[Session], Dict[str, Any]],
    ) -> QueryResponse:
        """
        Send ``call`` with the current session until it yields an answer to act on.

        Returns successful and in-progress responses. Recovers once from a rejected
        session and retries throttled answers with backoff.
        """
        while True:
            self._check_deadline(execution)
            if execution.cancel_event.is_set():
                raise self._cancelled(execution)

            session = self._session_manager.acquire()
            execution.session = session
            try:
                response = self._parse_response(execution, call(session))
                response_class = self.error_policy.classify_response(response)
                if response_class == ResponseClass.SESSION_REJECTED:
                    raise SessionRejectedError(
                        response.error.message if response.error else "Rejected",
                        {"error-code": response.code},
                    )
            except SessionRejectedError as e:
                self._recover_session(execution, session, e)
                continue
            except RequestError as e:
                http_code = e.context.get("http-code")
                if http_code is None:
                    raise
                response_class = self.error_policy.classify_status(http_code)
                if response_class == ResponseClass.SESSION_REJECTED:
                    self._recover_session(execution, session, e)
                    continue
                if response_class == ResponseClass.THROTTLED:
                    self._back_off_throttled(execution, str(http_code))
                    continue
                raise RemoteStatementError(
                    "Statement request failed: {}".format(e.message),
                    {"query-id": execution.query_id, **e.context},
                    query_id=execution.query_id,
                    code=str(http_code),
                ) from e

            if response_class == ResponseClass.THROTTLED:
                self._back_off_throttled(execution, response.code)
                continue
            if response_class == ResponseClass.REMOTE_ERROR:
                raise self._remote_error(execution, response)
            return response

    def _recover_session(
        self, execution: _Execution, session: Session, error: RequestError
    ):
        if execution.session_recovered:
            raise AuthenticationError(
                "Session was rejected again after renewal: {}".format(error.message),
                {"query-id": execution.query_id, **error.context},
            ) from error
        logger.warning(
            "Session %s was rejected, renewing and retrying", session.session_id
        )
        execution.session_recovered = True
        self._session_manager.invalidate(session)

    def _back_off_throttled(self, execution: _Execution, code: Optional[str]):
        if execution.throttle_attempts >= self.error_policy.max_throttle_retries:
            raise ThrottledError(
                "Statement was throttled {} times".format(
                    execution.throttle_attempts + 1
                ),
                {"query-id": execution.query_id, "error-code": code},
                query_id=execution.query_id,
            )
        delay = self.error_policy.throttle_backoff(execution.throttle_attempts)
        execution.throttle_attempts += 1
        logger.warning(
            "Statement throttled (code %s), retrying in %.2fs (attempt %s)",
            code,
            delay,
            execution.throttle_attempts,
        )
        self._wait(execution, delay)

    def _wait(self, execution: _Execution, seconds: float):
        """Suspend for ``seconds``, waking up early for a cancel or the deadline."""
        if execution.deadline is not None:
            remaining = execution.deadline - self._clock()
            if remaining <= 0:
                raise self._timed_out(execution)
            seconds = min(seconds, remaining)
        if execution.cancel_event.wait(seconds):
            raise self._cancelled(execution)

    def _check_deadline(self, execution: _Execution):
        if execution.deadline is not None and self._clock() >= execution.deadline:
            raise self._timed_out(execution)

    @staticmethod
    def _timed_out(execution: _Execution) -> StatementError:
        return StatementTimeoutError(
            "Statement {} did not complete within its timeout".format(
                execution.query_id
            ),
            {"query-id": execution.query_id},
            query_id=execution.query_id,
        )

    @staticmethod
    def _cancelled(execution: _Execution) -> StatementError:
        logger.info("Stopped observing statement %s", execution.query_id)
        return StatementCancelledError(
            "Statement {} was cancelled".format(execution.query_id),
            {"query-id": execution.query_id},
            query_id=execution.query_id,
        )

    @staticmethod
    def _parse_response(
        execution: _Execution, envelope: Dict[str, Any]
    ) -> QueryResponse:
        try:
            return QueryResponse.from_dict(envelope)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidServerResponseError(
                "Statement response is malformed: {!r}".format(e),
                {"query-id": execution.query_id},
            ) from e

    @staticmethod
    def _remote_error(execution: _Execution, response: QueryResponse) -> StatementError:
        error = response.error or ServiceError(
            message="Unknown error", code=response.code
        )
        query_id = error.query_id or response.query_id or execution.query_id
        return RemoteStatementError(
            "Statement failed: {} - {}".format(error.code, error.message),
            {
                "query-id": query_id,
                "error-code": error.code,
                "sql-state": error.sql_state,
            },
            query_id=query_id,
            code=error.code,
            sql_state=error.sql_state,
        )

    @staticmethod
    def _converter(session: Optional[Session]) -> SqlTypeConverter:
        parameters = session.parameters if session is not None else {}
        return SqlTypeConverter.for_timezone_name(parameters.get("TIMEZONE"))
