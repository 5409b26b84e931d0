import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from snowflake_api.auth.authenticators import AuthProvider
from snowflake_api.auth.token import Token
from snowflake_api.backend.models import (
    LoginRequest,
    LoginResponse,
    RenewSessionRequest,
    RenewSessionResponse,
)
from snowflake_api.backend.rest_client import SnowflakeRestClient
from snowflake_api.exc import (
    AuthenticationError,
    InvalidServerResponseError,
    RequestError,
    SessionAlreadyClosedError,
    SessionRejectedError,
)

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_MARGIN_SECS = 60.0


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class SessionContext:
    """Warehouse, database, schema and role a session runs statements under."""

    warehouse: Optional[str] = None
    database: Optional[str] = None
    schema: Optional[str] = None
    role: Optional[str] = None


class _SequenceCounter:
    """Monotonic statement sequence of one server session, shared across token renewals."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = 0

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value


class Session:
    """
    An authenticated server session.

    Instances are never mutated: a renewal produces a new Session that replaces the
    old one inside the SessionManager, so a caller holding a Session always sees a
    consistent token and expiry.
    """

    def __init__(
        self,
        account_identifier: str,
        context: SessionContext,
        session_token: Token,
        master_token: Token,
        session_id: Optional[str] = None,
        parameters: Optional[Dict[str, object]] = None,
        _sequence: Optional[_SequenceCounter] = None,
    ):
        self.account_identifier = account_identifier
        self.context = context
        self.session_token = session_token
        self.master_token = master_token
        self.session_id = session_id
        self.parameters = parameters or {}
        self._sequence = _sequence or _SequenceCounter()

    @property
    def token(self) -> str:
        return self.session_token.value

    @property
    def expires_at(self) -> datetime:
        return self.session_token.expiry

    def next_sequence_id(self) -> int:
        return self._sequence.next()

    def __repr__(self) -> str:
        return "Session(session_id={}, expires_at={})".format(
            self.session_id, self.expires_at.isoformat()
        )


class SessionManager:
    """
    Owns the session of one connection and keeps its token fresh.

    ``acquire`` returns a session whose token is valid for more than
    ``renewal_margin`` seconds, renewing it first if needed. At most one renewal is
    in flight at a time; callers arriving while it runs wait for it and receive
    its session or its error.
    """

    def __init__(
        self,
        rest_client: SnowflakeRestClient,
        auth_provider: AuthProvider,
        account_identifier: str,
        user: Optional[str] = None,
        context: Optional[SessionContext] = None,
        renewal_margin: float = DEFAULT_RENEWAL_MARGIN_SECS,
        session_parameters: Optional[Dict[str, object]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._rest_client = rest_client
        self._auth_provider = auth_provider
        self.account_identifier = account_identifier
        self.user = user
        self.context = context or SessionContext()
        self.renewal_margin = renewal_margin
        self._session_parameters = session_parameters or {}
        self._clock = clock

        self._lock = threading.Lock()
        self._session: Optional[Session] = None
        self._invalidated = False
        self._renewal: Optional["Future[Session]"] = None

    @property
    def is_open(self) -> bool:
        return self._session is not None

    def acquire(self) -> Session:
        """
        Return a session with more than ``renewal_margin`` seconds of validity.

        Raises:
            AuthenticationError: If the renewal this call waited on failed
        """
        with self._lock:
            session = self._session
            if (
                session is not None
                and not self._invalidated
                and session.session_token.is_valid(self.renewal_margin, self._clock())
            ):
                return session

            if self._renewal is not None:
                renewal = self._renewal
                leader = False
            else:
                renewal = self._renewal = Future()
                leader = True
                force_login = self._invalidated

        if not leader:
            logger.debug("SessionManager.acquire: waiting for in-flight renewal")
            return renewal.result()

        try:
            new_session = self._renew(session, force_login)
        except BaseException as e:
            renewal.set_exception(e)
            raise
        else:
            with self._lock:
                self._session = new_session
                self._invalidated = False
                self._renewal = None
            renewal.set_result(new_session)
            return new_session
        finally:
            with self._lock:
                if self._renewal is renewal:
                    self._renewal = None

    def invalidate(self, session: Optional[Session] = None) -> None:
        """
        Force the next ``acquire`` to log in again regardless of token freshness.

        Passing the session a request was rejected with makes the call a no-op when
        that session was already replaced, so concurrent rejections renew only once.
        """
        with self._lock:
            if session is not None and session is not self._session:
                logger.debug("SessionManager.invalidate: session already replaced")
                return
            logger.info(
                "Session %s invalidated", getattr(self._session, "session_id", None)
            )
            self._invalidated = True

    def close(self) -> None:
        """Log the session out. Safe to call more than once."""
        with self._lock:
            session = self._session
            self._session = None
            self._invalidated = False

        if session is None:
            return

        try:
            self._rest_client.close_session(session.token)
            logger.info("Closed session %s", session.session_id)
        except (SessionAlreadyClosedError, SessionRejectedError):
            logger.info("Session %s was already closed or expired", session.session_id)
        except RequestError as e:
            if e.context.get("http-code") == 404:
                logger.info("Session %s was already closed", session.session_id)
            else:
                logger.error(
                    "Attempt to close session %s raised a local exception: %s",
                    session.session_id,
                    e,
                )

    def _renew(self, stale: Optional[Session], force_login: bool) -> Session:
        if (
            stale is not None
            and not force_login
            and stale.master_token.is_valid(0, self._clock())
        ):
            try:
                return self._renew_with_master_token(stale)
            except (AuthenticationError, RequestError) as e:
                logger.info(
                    "Session token renewal failed, logging in again: %s", e.message
                )
        return self._login()

    def _renew_with_master_token(self, stale: Session) -> Session:
        logger.debug("Renewing session %s with the master token", stale.session_id)
        response = self._rest_client.renew_session(
            stale.master_token.value,
            RenewSessionRequest(old_session_token=stale.token).to_dict(),
        )
        if not response.get("success", False):
            raise AuthenticationError(
                "Session renewal failed: {}".format(response.get("message")),
                {"error-code": response.get("code")},
                code=response.get("code"),
            )

        try:
            renewed = RenewSessionResponse.from_dict(response)
        except KeyError as e:
            raise AuthenticationError(
                "Session renewal response is missing {}".format(e)
            ) from e

        now = self._clock()
        master_token = stale.master_token
        if renewed.master_token:
            master_token = Token.from_validity(
                renewed.master_token,
                renewed.master_validity_secs or 0,
                now,
            )

        logger.info("Renewed session %s", stale.session_id)
        return Session(
            account_identifier=stale.account_identifier,
            context=stale.context,
            session_token=Token.from_validity(
                renewed.session_token, renewed.validity_secs, now
            ),
            master_token=master_token,
            session_id=renewed.session_id or stale.session_id,
            parameters=stale.parameters,
            _sequence=stale._sequence,
        )

    def _login(self) -> Session:
        logger.debug(
            "Logging in to account %s as %s", self.account_identifier, self.user
        )
        request = LoginRequest(
            account_name=self.account_identifier.split(".", 1)[0].upper(),
            login_name=self.user,
            session_parameters=dict(self._session_parameters),
        )
        body = request.to_dict()
        # Asks the credential provider for a fresh token
        self._auth_provider.add_login_fields(body["data"])

        try:
            response = self._rest_client.login(
                body,
                warehouse=self.context.warehouse,
                database=self.context.database,
                schema=self.context.schema,
                role=self.context.role,
            )
        except (RequestError, InvalidServerResponseError) as e:
            raise AuthenticationError(
                "Login request failed: {}".format(e.message),
                {"account": self.account_identifier, **e.context},
            ) from e

        if not response.get("success", False):
            code = response.get("code")
            raise AuthenticationError(
                "Login failed: {}".format(response.get("message")),
                {"account": self.account_identifier, "error-code": code},
                code=code,
            )

        try:
            login = LoginResponse.from_dict(response)
        except KeyError as e:
            raise AuthenticationError(
                "Login response is missing {}".format(e),
                {"account": self.account_identifier},
            ) from e

        now = self._clock()
        info = login.session_info
        context = SessionContext(
            warehouse=info.warehouse or self.context.warehouse,
            database=info.database or self.context.database,
            schema=info.schema or self.context.schema,
            role=info.role or self.context.role,
        )
        session = Session(
            account_identifier=self.account_identifier,
            context=context,
            session_token=Token.from_validity(
                login.session_token, login.validity_secs, now
            ),
            master_token=Token.from_validity(
                login.master_token, login.master_validity_secs, now
            ),
            session_id=login.session_id,
            parameters=login.parameters,
        )
        logger.info("Opened session %s", session.session_id)
        return session
