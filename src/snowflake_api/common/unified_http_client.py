import logging
import ssl
import urllib.parse
import urllib.request
from contextlib import contextmanager
from typing import Dict, Generator, Optional, Tuple

import urllib3
from urllib3 import BaseHTTPResponse, PoolManager, ProxyManager
from urllib3.exceptions import MaxRetryError
from urllib3.util import make_headers

from snowflake_api.auth.retry import CommandType, SnowflakeRetryPolicy
from snowflake_api.common.http import HttpHeader, HttpMethod
from snowflake_api.exc import RequestError

logger = logging.getLogger(__name__)


def detect_proxy(
    scheme: str, proxy_auth_method: Optional[str] = None
) -> Tuple[Optional[str], Optional[Dict[str, str]]]:
    """Return the system proxy for ``scheme`` and its basic auth headers, if any.

    Bypass rules are evaluated per request, see ``UnifiedHttpClient._should_use_proxy``.
    """
    try:
        proxy = urllib.request.getproxies().get(scheme)
    except (KeyError, AttributeError):
        proxy = None

    if not proxy:
        return None, None

    if proxy_auth_method not in (None, "basic"):
        raise ValueError(f"Unsupported proxy_auth_method: {proxy_auth_method}")

    parsed_proxy = urllib.parse.urlparse(proxy)
    if not parsed_proxy.username:
        return proxy, None

    credentials = "{}:{}".format(
        urllib.parse.unquote(parsed_proxy.username),
        urllib.parse.unquote(parsed_proxy.password or ""),
    )
    return proxy, make_headers(proxy_basic_auth=credentials)


class UnifiedHttpClient:
    """
    HTTP client shared by every request the connector makes.

    Requests to the service host and requests to the storage hosts serving result
    chunks go through the same pools. The client uses urllib3 for connection
    pooling, TLS and the retry policy, and decides per request whether to go
    through the system proxy based on its bypass rules.
    """

    def __init__(self, client_context):
        """
        Args:
            client_context: ClientContext instance containing HTTP configuration
        """
        self.config = client_context
        self._direct_pool_manager: Optional[PoolManager] = None
        self._proxy_pool_manager: Optional[ProxyManager] = None
        self._retry_policy: Optional[SnowflakeRetryPolicy] = None
        self._proxy_uri: Optional[str] = None
        self._setup_pool_managers()

    def _build_ssl_context(self) -> Optional[ssl.SSLContext]:
        ssl_options = self.config.ssl_options
        if not ssl_options:
            return None

        ssl_context = ssl.create_default_context()
        if not ssl_options.tls_verify:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        elif not ssl_options.tls_verify_hostname:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_REQUIRED

        if ssl_options.tls_trusted_ca_file:
            ssl_context.load_verify_locations(ssl_options.tls_trusted_ca_file)

        if ssl_options.tls_client_cert_file and ssl_options.tls_client_cert_key_file:
            ssl_context.load_cert_chain(
                ssl_options.tls_client_cert_file,
                ssl_options.tls_client_cert_key_file,
                ssl_options.tls_client_cert_key_password,
            )
        return ssl_context

    def _setup_pool_managers(self):
        self._retry_policy = SnowflakeRetryPolicy(
            delay_min=self.config.retry_delay_min,
            delay_max=self.config.retry_delay_max,
            stop_after_attempts_count=self.config.retry_stop_after_attempts_count,
            stop_after_attempts_duration=self.config.retry_stop_after_attempts_duration,
            force_dangerous_codes=self.config.retry_dangerous_codes,
        )

        pool_kwargs = {
            "num_pools": self.config.pool_connections,
            "maxsize": self.config.pool_maxsize,
            "retries": self._retry_policy,
            "timeout": urllib3.Timeout(
                connect=self.config.socket_timeout, read=self.config.socket_timeout
            )
            if self.config.socket_timeout
            else None,
            "ssl_context": self._build_ssl_context(),
        }

        self._direct_pool_manager = PoolManager(**pool_kwargs)

        proxy_uri, proxy_headers = detect_proxy(
            self.config.scheme, proxy_auth_method=self.config.proxy_auth_method
        )
        if proxy_uri:
            self._proxy_uri = proxy_uri
            self._proxy_pool_manager = ProxyManager(
                proxy_uri, proxy_headers=proxy_headers, **pool_kwargs
            )
            logger.debug("Initialized with proxy support: %s", proxy_uri)
        else:
            logger.debug("No system proxy detected, using direct connections only")

    def _should_use_proxy(self, target_host: str) -> bool:
        if not self._proxy_pool_manager:
            return False

        try:
            # proxy_bypass returns True if the host should BYPASS the proxy
            return not urllib.request.proxy_bypass(target_host)
        except Exception as e:
            logger.debug("Error checking proxy bypass for host %s: %s", target_host, e)
            return True

    def _get_pool_manager_for_url(self, url: str) -> PoolManager:
        target_host = urllib.parse.urlparse(url).hostname

        if target_host and self._should_use_proxy(target_host):
            logger.debug("Using proxy for request to %s", target_host)
            return self._proxy_pool_manager  # type: ignore[return-value]
        return self._direct_pool_manager  # type: ignore[return-value]

    def _prepare_headers(
        self, headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        request_headers = {}
        if self.config.user_agent:
            request_headers[HttpHeader.USER_AGENT.value] = self.config.user_agent
        if headers:
            request_headers.update(headers)
        return request_headers

    def _prepare_retry_policy(self, command_type: CommandType) -> SnowflakeRetryPolicy:
        """Return a retry policy for one request.

        Each request gets its own copy so concurrent chunk downloads and polls do not
        share the command type or the retry timer.
        """
        retry_policy = self._retry_policy.new()  # type: ignore[union-attr]
        retry_policy.command_type = command_type
        retry_policy.start_retry_timer()
        return retry_policy

    @contextmanager
    def request_context(
        self,
        method: HttpMethod,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        command_type: CommandType = CommandType.OTHER,
        **kwargs,
    ) -> Generator[BaseHTTPResponse, None, None]:
        """
        Context manager for making HTTP requests with proper resource cleanup.

        Args:
            method: HTTP method
            url: URL to request
            headers: Optional headers dict
            command_type: What the request does, used by the retry policy
            **kwargs: Additional arguments passed to urllib3 request

        Yields:
            BaseHTTPResponse: The HTTP response object

        Raises:
            RequestError: If the request could not be completed
        """
        logger.debug(
            "Making %s request to %s", method.value, urllib.parse.urlparse(url).netloc
        )

        if self._direct_pool_manager is None:
            raise RequestError("HTTP client is closed")

        request_headers = self._prepare_headers(headers)
        retry_policy = self._prepare_retry_policy(command_type)
        pool_manager = self._get_pool_manager_for_url(url)

        response = None

        try:
            response = pool_manager.request(
                method=method.value,
                url=url,
                headers=request_headers,
                retries=retry_policy,
                **kwargs,
            )
        except MaxRetryError as e:
            logger.error("HTTP request failed after retries: %s", e)
            raise RequestError(
                f"HTTP request failed: {e}",
                {"method": command_type.value, "original-exception": e},
            ) from e
        except RequestError:
            raise
        except Exception as e:
            logger.error("HTTP request error: %s", e)
            raise RequestError(
                f"HTTP request error: {e}",
                {"method": command_type.value, "original-exception": e},
            ) from e

        try:
            yield response
        finally:
            response.close()

    def request(
        self,
        method: HttpMethod,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        command_type: CommandType = CommandType.OTHER,
        **kwargs,
    ) -> BaseHTTPResponse:
        """
        Make an HTTP request and return the response with its body pre-loaded.
        """
        with self.request_context(
            method, url, headers=headers, command_type=command_type, **kwargs
        ) as response:
            # status and headers remain accessible after close(); read() caches the body
            response.read()
            return response

    def using_proxy(self) -> bool:
        return self._proxy_pool_manager is not None

    def close(self):
        """Close the underlying connection pools."""
        if self._direct_pool_manager:
            self._direct_pool_manager.clear()
            self._direct_pool_manager = None
        if self._proxy_pool_manager:
            self._proxy_pool_manager.clear()
            self._proxy_pool_manager = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
