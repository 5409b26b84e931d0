import logging
import threading
from typing import Any, Dict, Optional, Union

from snowflake_api import USER_AGENT_NAME, __version__
from snowflake_api.auth.authenticators import get_auth_provider
from snowflake_api.auth.common import ClientContext
from snowflake_api.backend.error_policy import ErrorPolicy
from snowflake_api.backend.executor import (
    DEFAULT_POLL_BACKOFF_FACTOR,
    DEFAULT_POLL_INTERVAL_BASE_SECS,
    DEFAULT_POLL_INTERVAL_MAX_SECS,
    DEFAULT_STATEMENT_TIMEOUT_SECS,
    StatementExecutor,
    StatementRequest,
)
from snowflake_api.backend.rest_client import SnowflakeRestClient
from snowflake_api.backend.session_manager import (
    DEFAULT_RENEWAL_MARGIN_SECS,
    SessionContext,
    SessionManager,
)
from snowflake_api.cloudfetch.downloader import DownloadableResultSettings
from snowflake_api.common.unified_http_client import UnifiedHttpClient
from snowflake_api.exc import InterfaceError
from snowflake_api.parameters.native import TParameterSequence
from snowflake_api.result_assembler import (
    DEFAULT_MAX_DOWNLOAD_THREADS,
    ResultAssembler,
)
from snowflake_api.result_set import ResultSet
from snowflake_api.types import SSLOptions

logger = logging.getLogger(__name__)


def build_client_context(
    account_identifier: str,
    user: Optional[str] = None,
    private_key: Optional[Union[str, bytes]] = None,
    private_key_password: Optional[Union[str, bytes]] = None,
    password: Optional[str] = None,
    oauth_token: Optional[str] = None,
    warehouse: Optional[str] = None,
    database: Optional[str] = None,
    schema: Optional[str] = None,
    role: Optional[str] = None,
    **kwargs,
) -> ClientContext:
    """Collect the connection settings, public and underscore-prefixed, into a ClientContext."""
    user_agent_entry = kwargs.get("user_agent_entry")
    if user_agent_entry:
        user_agent = "{}/{} ({})".format(USER_AGENT_NAME, __version__, user_agent_entry)
    else:
        user_agent = "{}/{}".format(USER_AGENT_NAME, __version__)

    ssl_options = SSLOptions(
        # Double negation is generally a bad thing, but we have to keep backward compatibility
        tls_verify=not kwargs.get(
            "_tls_no_verify", False
        ),  # by default - verify cert and host
        tls_verify_hostname=kwargs.get("_tls_verify_hostname", True),
        tls_trusted_ca_file=kwargs.get("_tls_trusted_ca_file"),
        tls_client_cert_file=kwargs.get("_tls_client_cert_file"),
        tls_client_cert_key_file=kwargs.get("_tls_client_cert_key_file"),
        tls_client_cert_key_password=kwargs.get("_tls_client_cert_key_password"),
    )

    return ClientContext(
        account_identifier=account_identifier,
        user=user,
        host=kwargs.get("_host"),
        port=kwargs.get("_port"),
        scheme=kwargs.get("_scheme"),
        auth_type=kwargs.get("auth_type"),
        private_key=private_key,
        private_key_password=private_key_password,
        password=password,
        oauth_token=oauth_token,
        jwt_lifetime_secs=kwargs.get("_jwt_lifetime_secs"),
        warehouse=warehouse,
        database=database,
        schema=schema,
        role=role,
        ssl_options=ssl_options,
        socket_timeout=kwargs.get("_socket_timeout"),
        retry_stop_after_attempts_count=kwargs.get("_retry_stop_after_attempts_count"),
        retry_delay_min=kwargs.get("_retry_delay_min"),
        retry_delay_max=kwargs.get("_retry_delay_max"),
        retry_stop_after_attempts_duration=kwargs.get(
            "_retry_stop_after_attempts_duration"
        ),
        retry_dangerous_codes=kwargs.get("_retry_dangerous_codes"),
        proxy_auth_method=kwargs.get("_proxy_auth_method"),
        pool_connections=kwargs.get("_pool_connections"),
        pool_maxsize=kwargs.get("_pool_maxsize"),
        user_agent=user_agent,
    )


class Connection:
    def __init__(
        self,
        account_identifier: str,
        user: Optional[str] = None,
        private_key: Optional[Union[str, bytes]] = None,
        private_key_password: Optional[Union[str, bytes]] = None,
        password: Optional[str] = None,
        oauth_token: Optional[str] = None,
        warehouse: Optional[str] = None,
        database: Optional[str] = None,
        schema: Optional[str] = None,
        role: Optional[str] = None,
        session_parameters: Optional[Dict[str, Any]] = None,
        max_download_threads: int = DEFAULT_MAX_DOWNLOAD_THREADS,
        **kwargs,
    ) -> None:
        """
        Connect to a Snowflake account and open a session.

        Parameters:
            :param account_identifier: Account identifier, e.g. ``myorg-myaccount`` or
                ``xy12345.us-east-1``. The host defaults to
                ``<account_identifier>.snowflakecomputing.com``.
            :param user: Login name. Required for key-pair authentication.
            :param private_key: `str` or `bytes`, optional
                PEM encoded PKCS#8 RSA private key. A fresh JWT is signed with it on
                every login.
                Examples:
                        ```
                         connection = snowflake_api.connect(
                            account_identifier='xy12345.us-east-1',
                            user='LOADER',
                            private_key=open('rsa_key.p8', 'rb').read(),
                            warehouse='COMPUTE_WH',
                         )
                        ```
            :param private_key_password: Passphrase of an encrypted private key.
            :param password: Password of the user, when not using a key pair.
            :param oauth_token: OAuth access token, when not using a key pair.
            :param warehouse, database, schema, role: Initial session context.
            :param session_parameters: An optional dictionary of session parameters
                sent with the login request, e.g. ``{"TIMEZONE": "UTC"}``.
            :param max_download_threads: Maximum number of result chunks fetched in
                parallel. Defaults to 10.

        Other Parameters:
            user_agent_entry: `str`, optional
                A custom tag to append to the User-Agent header.
            auth_type: `str`, optional
                ``SNOWFLAKE_JWT``, ``SNOWFLAKE`` or ``OAUTH``. Inferred from the
                credentials given when not set.
        """

        # Internal arguments in **kwargs:
        # _host, _port, _scheme
        #  Override the address derived from the account identifier
        # _tls_no_verify
        #   Set to True (Boolean) to completely disable SSL verification.
        # _tls_verify_hostname
        #   Set to False (Boolean) to disable SSL hostname verification, but check certificate.
        # _tls_trusted_ca_file
        #   Set to the path of the file containing trusted CA certificates for server certificate
        #   verification. If not provide, uses system truststore.
        # _tls_client_cert_file, _tls_client_cert_key_file, _tls_client_cert_key_password
        #   Set client SSL certificate.
        # _retry_stop_after_attempts_count, _retry_stop_after_attempts_duration
        #  Bounds of a transport retry sequence (defaults to 5 attempts, 300 seconds)
        # _retry_delay_min, _retry_delay_max
        #  Bounds of the exponential backoff between transport retries
        # _socket_timeout
        #  The timeout in seconds for socket send, recv and connect operations.
        # _jwt_lifetime_secs
        #  Lifetime of the JWT minted for key-pair logins (defaults to 59 minutes)
        # _session_renewal_margin
        #  Seconds of validity below which a session token is renewed (defaults to 60)
        # _poll_interval_base, _poll_backoff_factor, _poll_interval_max
        #  Backoff between polls of a running statement (defaults to 0.1s, 2, 5s)
        # _statement_timeout
        #  Seconds a statement may run when execute() is not given a timeout
        # _max_throttle_retries
        #  Attempts after a throttled answer before the statement fails
        # _error_policy
        #  An ErrorPolicy replacing the default classification of service answers
        # _download_timeout
        #  Timeout of a single chunk download (defaults to 60 seconds)

        logger.debug(
            "Connection.__init__(account_identifier=%s, user=%s)",
            account_identifier,
            user,
        )

        self.client_context = build_client_context(
            account_identifier,
            user=user,
            private_key=private_key,
            private_key_password=private_key_password,
            password=password,
            oauth_token=oauth_token,
            warehouse=warehouse,
            database=database,
            schema=schema,
            role=role,
            **kwargs,
        )
        auth_provider = get_auth_provider(self.client_context)

        error_policy = kwargs.get("_error_policy")
        if error_policy is None:
            error_policy = ErrorPolicy(
                max_throttle_retries=kwargs.get("_max_throttle_retries", 5)
            )

        self.http_client = UnifiedHttpClient(self.client_context)
        self.rest_client = SnowflakeRestClient(
            self.http_client, self.client_context.base_url, error_policy
        )
        self.session_manager = SessionManager(
            self.rest_client,
            auth_provider,
            account_identifier,
            user=user,
            context=SessionContext(
                warehouse=warehouse, database=database, schema=schema, role=role
            ),
            renewal_margin=kwargs.get(
                "_session_renewal_margin", DEFAULT_RENEWAL_MARGIN_SECS
            ),
            session_parameters=session_parameters,
        )
        self.assembler = ResultAssembler(
            self.http_client,
            max_download_threads=max_download_threads,
            settings=DownloadableResultSettings(
                download_timeout=kwargs.get("_download_timeout", 60)
            ),
        )
        self.executor = StatementExecutor(
            self.session_manager,
            self.rest_client,
            self.assembler,
            error_policy=error_policy,
            poll_interval_base=kwargs.get(
                "_poll_interval_base", DEFAULT_POLL_INTERVAL_BASE_SECS
            ),
            poll_backoff_factor=kwargs.get(
                "_poll_backoff_factor", DEFAULT_POLL_BACKOFF_FACTOR
            ),
            poll_interval_max=kwargs.get(
                "_poll_interval_max", DEFAULT_POLL_INTERVAL_MAX_SECS
            ),
            default_timeout=kwargs.get(
                "_statement_timeout", DEFAULT_STATEMENT_TIMEOUT_SECS
            ),
        )

        try:
            self.session_manager.acquire()
        except Exception:
            self.http_client.close()
            raise

        self.open = True

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __del__(self):
        if getattr(self, "open", False):
            logger.debug("Closing unclosed connection")
            try:
                self._close()
            except Exception as e:
                # Close on best-effort basis.
                logger.debug("Couldn't close unclosed connection: {}".format(e))

    @property
    def session_id(self) -> Optional[str]:
        if not self.open:
            return None
        return self.session_manager.acquire().session_id

    def execute(
        self,
        sql: str,
        params: Optional[TParameterSequence] = None,
        context: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ResultSet:
        """
        Execute a SQL statement and return its materialized result.

        Parameters are bound positionally, matching ``?`` or ``:1`` markers in the
        statement. Primitive values are mapped to server types; wrap a value in
        one of the typed parameter classes to choose its type explicitly:

        >>> conn.execute("SELECT ?, ?", [1, TimestampLTZParameter(now)])

        :param context: Statement-level parameters such as ``QUERY_TAG``.
        :param timeout: Seconds the statement may run before a StatementTimeoutError.
        :param cancel_event: Set it from another thread to stop waiting for the statement.
        :returns: ResultSet
        """
        self._check_not_closed()
        request = StatementRequest(
            sql=sql,
            parameters=params,
            timeout=timeout,
            context=dict(context or {}),
        )
        return self.executor.execute(request, cancel_event=cancel_event)

    def close(self) -> None:
        """Close the session and the connection pools. Safe to call more than once."""
        self._close()

    def _close(self) -> None:
        if not getattr(self, "open", False):
            return
        self.open = False

        try:
            self.session_manager.close()
        finally:
            self.http_client.close()

    def _check_not_closed(self):
        if not self.open:
            raise InterfaceError("Attempting operation on closed connection")
