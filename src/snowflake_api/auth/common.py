from enum import Enum
import logging
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_DOMAIN = "snowflakecomputing.com"


class AuthType(Enum):
    KEY_PAIR = "SNOWFLAKE_JWT"
    PASSWORD = "SNOWFLAKE"
    OAUTH = "OAUTH"


class ClientContext:
    def __init__(
        self,
        account_identifier: str,
        user: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        scheme: Optional[str] = None,
        auth_type: Optional[str] = None,
        private_key: Optional[Union[str, bytes]] = None,
        private_key_password: Optional[Union[str, bytes]] = None,
        password: Optional[str] = None,
        oauth_token: Optional[str] = None,
        jwt_lifetime_secs: Optional[int] = None,
        warehouse: Optional[str] = None,
        database: Optional[str] = None,
        schema: Optional[str] = None,
        role: Optional[str] = None,
        # HTTP client configuration parameters
        ssl_options=None,  # SSLOptions type
        socket_timeout: Optional[float] = None,
        retry_stop_after_attempts_count: Optional[int] = None,
        retry_delay_min: Optional[float] = None,
        retry_delay_max: Optional[float] = None,
        retry_stop_after_attempts_duration: Optional[float] = None,
        retry_dangerous_codes: Optional[List[int]] = None,
        proxy_auth_method: Optional[str] = None,
        pool_connections: Optional[int] = None,
        pool_maxsize: Optional[int] = None,
        user_agent: Optional[str] = None,
    ):
        if not account_identifier:
            raise ValueError("account_identifier is required")

        self.account_identifier = account_identifier
        self.user = user
        self.host = host or "{}.{}".format(account_identifier.lower(), DEFAULT_DOMAIN)
        self.port = port or 443
        self.scheme = scheme or "https"
        self.auth_type = auth_type
        self.private_key = private_key
        self.private_key_password = private_key_password
        self.password = password
        self.oauth_token = oauth_token
        self.jwt_lifetime_secs = jwt_lifetime_secs or 59 * 60
        self.warehouse = warehouse
        self.database = database
        self.schema = schema
        self.role = role

        # HTTP client configuration
        self.ssl_options = ssl_options
        self.socket_timeout = socket_timeout
        self.retry_stop_after_attempts_count = retry_stop_after_attempts_count or 5
        self.retry_delay_min = retry_delay_min or 1.0
        self.retry_delay_max = retry_delay_max or 10.0
        self.retry_stop_after_attempts_duration = (
            retry_stop_after_attempts_duration or 300.0
        )
        self.retry_dangerous_codes = retry_dangerous_codes or []
        self.proxy_auth_method = proxy_auth_method
        self.pool_connections = pool_connections or 10
        self.pool_maxsize = pool_maxsize or 20
        self.user_agent = user_agent

    @property
    def base_url(self) -> str:
        return "{}://{}:{}".format(self.scheme, self.host, self.port)
