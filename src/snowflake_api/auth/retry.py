import logging
import time
import typing
from enum import Enum
from typing import List, Optional, Tuple, Union

from urllib3 import BaseHTTPResponse  # type: ignore
from urllib3 import Retry
from urllib3.util.retry import RequestHistory

from snowflake_api.exc import (
    MaxRetryDurationError,
    NonRecoverableNetworkError,
    SessionAlreadyClosedError,
)

logger = logging.getLogger(__name__)

# Codes that carry a definitive answer from the service; retrying them can never help
NEVER_RETRIED_CODES = (400, 401, 403)


class CommandType(Enum):
    LOGIN = "Login"
    RENEW_SESSION = "RenewSession"
    CLOSE_SESSION = "CloseSession"
    EXECUTE_STATEMENT = "ExecuteStatement"
    GET_RESULT = "GetResult"
    FETCH_CHUNK = "FetchChunk"
    OTHER = "Other"

    @classmethod
    def get(cls, value: str):
        value_name_map = {i.value: i.name for i in cls}
        valid_command = value_name_map.get(value, False)
        if valid_command:
            return getattr(cls, str(valid_command))
        else:
            return cls.OTHER


class SnowflakeRetryPolicy(Retry):
    """
    urllib3 retry policy for warehouse calls.

    Backoff and attempt counting are urllib3's; this class adds an overall duration
    limit and per-command rules about which statuses may be retried (see
    `should_retry()`). `raise_on_status` is off so the last response reaches the
    caller, which maps its status to an error.

    :param delay_min:
        Seconds of the first backoff step, used as urllib3's backoff_factor.

    :param delay_max:
        Upper bound in seconds for a single backoff, used as urllib3's backoff_max.

    :param stop_after_attempts_count:
        Number of attempts before giving up, used as urllib3's total.

    :param stop_after_attempts_duration:
        Seconds after the first attempt beyond which no further wait is scheduled.

    :param force_dangerous_codes:
        Extra statuses that statement submission may be retried on.

    :param _retry_start_time:
        Start of the current request's retry window. Set with start_retry_timer().

    :param _command_type:
        CommandType of the request, set by UnifiedHttpClient per request.

    :param urllib3_kwargs:
        Remaining Retry() arguments, forwarded unchanged.
    """

    def __init__(
        self,
        delay_min: float,
        delay_max: float,
        stop_after_attempts_count: int,
        stop_after_attempts_duration: float,
        force_dangerous_codes: List[int],
        _retry_start_time: Optional[float] = None,
        _command_type: Optional[CommandType] = None,
        urllib3_kwargs: Optional[dict] = None,
    ):
        urllib3_kwargs = dict(urllib3_kwargs or {})

        # These values do not change from one command to the next
        self.delay_max = delay_max
        self.delay_min = delay_min
        self.stop_after_attempts_count = stop_after_attempts_count
        self.stop_after_attempts_duration = stop_after_attempts_duration
        self.force_dangerous_codes = force_dangerous_codes

        # These values do change from one command to the next
        self._retry_start_time = _retry_start_time
        self.command_type = _command_type

        # the length of _history increases as retries are performed
        _history: Union[Tuple[RequestHistory, ...], None] = urllib3_kwargs.get(
            "history"
        )

        if not _history:
            _attempts_remaining = self.stop_after_attempts_count
        else:
            # at least one of our attempts has been consumed, and urllib3 will have set a total
            _total: int = urllib3_kwargs.pop("total")
            _attempts_remaining = _total

        _urllib_kwargs_we_care_about = dict(
            total=_attempts_remaining,
            respect_retry_after_header=True,
            backoff_factor=self.delay_min,
            backoff_max=self.delay_max,
            allowed_methods=["GET", "POST", "DELETE"],
            status_forcelist=[429, 503, *self.force_dangerous_codes],
            raise_on_status=False,
        )

        urllib3_kwargs.update(**_urllib_kwargs_we_care_about)

        super().__init__(
            **urllib3_kwargs,  # type: ignore
        )

    def new(self, **urllib3_incremented_counters: typing.Any) -> Retry:
        """Pass the entire retry state to its next iteration.

        urllib3 calls Retry.new() between successive requests as part of `.increment()`.
        Since our subclass has a different __init__ signature we pipe our own state
        through here while preserving the super-class's counters.
        """

        snowflake_init_params = dict(
            delay_min=self.delay_min,
            delay_max=self.delay_max,
            stop_after_attempts_count=self.stop_after_attempts_count,
            stop_after_attempts_duration=self.stop_after_attempts_duration,
            force_dangerous_codes=self.force_dangerous_codes,
            _retry_start_time=self._retry_start_time,
            _command_type=self._command_type,
        )

        # Note: if we update urllib3 we may need to add/remove arguments from this dict
        urllib3_init_params = dict(
            total=self.total,
            connect=self.connect,
            read=self.read,
            redirect=self.redirect,
            status=self.status,
            other=self.other,
            allowed_methods=self.allowed_methods,
            status_forcelist=self.status_forcelist,
            backoff_factor=self.backoff_factor,  # type: ignore
            backoff_max=self.backoff_max,  # type: ignore
            raise_on_redirect=self.raise_on_redirect,
            raise_on_status=self.raise_on_status,
            history=self.history,
            remove_headers_on_redirect=self.remove_headers_on_redirect,
            respect_retry_after_header=self.respect_retry_after_header,
            backoff_jitter=self.backoff_jitter,  # type: ignore
        )
        urllib3_init_params.update(**urllib3_incremented_counters)

        return type(self)(
            urllib3_kwargs=urllib3_init_params,
            **snowflake_init_params,  # type: ignore[arg-type]
        )

    @property
    def command_type(self) -> Optional[CommandType]:
        return self._command_type or None

    @command_type.setter
    def command_type(self, value: Optional[CommandType]):
        self._command_type = value

    def start_retry_timer(self):
        """Timer is used to monitor the overall time across successive requests"""
        self._retry_start_time = time.time()

    def check_timer_duration(self):
        """Return time in seconds since the timer was started"""
        return time.time() - self._retry_start_time

    def check_proposed_wait(self, proposed_wait: Union[int, float]) -> None:
        """Raise MaxRetryDurationError if waiting would overrun the retry window"""

        proposed_overall_time = self.check_timer_duration() + proposed_wait
        if proposed_overall_time > self.stop_after_attempts_duration:
            raise MaxRetryDurationError(
                "Retry would exceed the maximum retry duration of {} seconds".format(
                    self.stop_after_attempts_duration
                )
            )

    def sleep_for_retry(self, response: BaseHTTPResponse) -> bool:  # type: ignore
        """Honour Retry-After, raising MaxRetryDurationError if it overruns the window"""
        retry_after = self.get_retry_after(response)
        if retry_after:
            self.check_proposed_wait(retry_after)
            time.sleep(retry_after)
            return True

        return False

    def get_backoff_time(self) -> float:
        """urllib3 backoff, capped at delay_max and checked against the duration limit"""

        proposed_backoff = super().get_backoff_time()
        proposed_backoff = min(proposed_backoff, self.delay_max)
        self.check_proposed_wait(proposed_backoff)

        return proposed_backoff

    def should_retry(self, method: str, status_code: int) -> Tuple[bool, str]:
        """Decide whether a response with ``status_code`` is worth another attempt.

        Not retried:

            - 2xx responses.
            - 501, which raises NonRecoverableNetworkError carrying the status.
            - 400, 401 and 403. A rejected session token is recovered one level up,
              by the statement executor renewing the session.
            - A repeated 404 on logout, which raises SessionAlreadyClosedError.
            - Statement submission answered with anything outside 429, 503 and the
              configured dangerous codes. Resending a statement the service may
              have started is not safe, so the response goes back to the caller.

        Everything else is retried.
        """

        if 200 <= status_code < 300:
            return False, "2xx codes are not retried"

        if status_code == 501:
            raise NonRecoverableNetworkError(
                "Received code 501 from server.", {"http-code": status_code}
            )

        if not self._is_method_retryable(method):  # type: ignore
            return False, "Only GET, POST and DELETE requests are retried"

        if status_code in NEVER_RETRIED_CODES:
            return False, f"{status_code} codes are not retried"

        if (
            status_code == 404
            and self.command_type == CommandType.CLOSE_SESSION
            and len(self.history) > 0
        ):
            raise SessionAlreadyClosedError(
                "Logout received 404 code from the service. Session is already closed."
            )

        if (
            self.command_type == CommandType.EXECUTE_STATEMENT
            and status_code not in self.status_forcelist
            and status_code not in self.force_dangerous_codes
        ):
            return (
                False,
                f"Query submission is not retried for code {status_code}",
            )

        if (
            self.command_type == CommandType.EXECUTE_STATEMENT
            and status_code in self.force_dangerous_codes
        ):
            return (
                True,
                f"Retrying submission on dangerous code {status_code}",
            )

        return True, "Retrying failed {} request".format(
            self.command_type and self.command_type.value
        )

    def is_retry(
        self, method: str, status_code: int, has_retry_after: bool = False
    ) -> bool:
        """
        Called by urllib3 when determining whether or not to retry

        Logs a debug message if the request will be retried
        """

        should_retry, msg = self.should_retry(method, status_code)

        if should_retry:
            logger.debug(msg)

        return should_retry
