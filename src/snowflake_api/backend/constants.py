"""
Constants for the warehouse REST protocol.
"""

from typing import Dict
from enum import Enum

LOGIN_PATH = "/session/v1/login-request"
TOKEN_REQUEST_PATH = "/session/token-request"
SESSION_PATH = "/session"
QUERY_PATH = "/queries/v1/query-request"
QUERY_RESULT_PATH = "/queries/{}/result"

CLIENT_APP_ID = "PythonConnector"
CLIENT_APP_VERSION = "3.12.0"

# Response codes carried in the body of HTTP 200 answers
QUERY_IN_PROGRESS_CODE = "333333"
QUERY_IN_PROGRESS_ASYNC_CODE = "333334"
SESSION_GONE_CODE = "390111"
SESSION_EXPIRED_CODE = "390112"
MASTER_TOKEN_NOT_FOUND_CODE = "390113"
MASTER_TOKEN_EXPIRED_CODE = "390114"
MASTER_TOKEN_INVALID_CODE = "390115"

# SSE-C headers for result chunks stored with a customer supplied key
SSE_C_ALGORITHM_HEADER = "x-amz-server-side-encryption-customer-algorithm"
SSE_C_KEY_HEADER = "x-amz-server-side-encryption-customer-key"
SSE_C_AES = "AES256"

# from https://docs.snowflake.com/en/sql-reference/parameters
ALLOWED_STATEMENT_PARAMETERS_TO_DEFAULT_VALUES_MAP: Dict[str, str] = {
    "BINARY_OUTPUT_FORMAT": "HEX",
    "CLIENT_RESULT_CHUNK_SIZE": "160",
    "DATE_OUTPUT_FORMAT": "YYYY-MM-DD",
    "MULTI_STATEMENT_COUNT": "1",
    "QUERY_TAG": "",
    "ROWS_PER_RESULTSET": "0",
    "STATEMENT_TIMEOUT_IN_SECONDS": "172800",
    "TIMESTAMP_OUTPUT_FORMAT": "YYYY-MM-DD HH24:MI:SS.FF3 TZHTZM",
    "TIMESTAMP_TYPE_MAPPING": "TIMESTAMP_NTZ",
    "TIMEZONE": "America/Los_Angeles",
    "USE_CACHED_RESULT": "true",
    "WEEK_START": "0",
}


class ResultFormat(Enum):
    """Enum for the queryResultFormat values of a query response."""

    JSON = "json"
    ARROW = "arrow"

    @classmethod
    def from_response(cls, value) -> "ResultFormat":
        if value and str(value).lower() == cls.ARROW.value:
            return cls.ARROW
        return cls.JSON
