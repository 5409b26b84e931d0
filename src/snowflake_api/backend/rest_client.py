import json
import logging
import time
import urllib.parse
import uuid
from typing import Any, Dict, Optional

from snowflake_api.auth.retry import CommandType
from snowflake_api.backend.constants import (
    LOGIN_PATH,
    QUERY_PATH,
    SESSION_PATH,
    TOKEN_REQUEST_PATH,
)
from snowflake_api.backend.error_policy import ErrorPolicy
from snowflake_api.common.http import ContentType, HttpHeader, HttpMethod
from snowflake_api.common.unified_http_client import UnifiedHttpClient
from snowflake_api.exc import (
    InvalidServerResponseError,
    RequestError,
    SessionRejectedError,
)

logger = logging.getLogger(__name__)


def _auth_header_value(token: str) -> str:
    return 'Snowflake Token="{}"'.format(token)


class SnowflakeRestClient:
    """
    JSON-over-HTTP calls to the warehouse service.

    Every call gets fresh ``requestId`` and ``request_guid`` query parameters so the
    service can deduplicate retried submissions. Authenticated calls carry the
    token passed in by the caller; this class never stores tokens.
    """

    def __init__(
        self,
        http_client: UnifiedHttpClient,
        base_url: str,
        error_policy: Optional[ErrorPolicy] = None,
    ):
        self._http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.error_policy = error_policy or ErrorPolicy()

    def _build_url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        request_params: Dict[str, Any] = {
            k: v for k, v in (params or {}).items() if v is not None
        }
        request_params.setdefault("requestId", str(uuid.uuid4()))
        request_params["request_guid"] = str(uuid.uuid4())

        # getResultUrl values are relative and may already carry a query string
        separator = "&" if "?" in path else "?"
        return "{}{}{}{}".format(
            self.base_url, path, separator, urllib.parse.urlencode(request_params)
        )

    def _make_request(
        self,
        method: HttpMethod,
        path: str,
        command_type: CommandType,
        data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        accept: ContentType = ContentType.JSON,
    ) -> Dict[str, Any]:
        """
        Send one request and return the decoded JSON envelope.

        Raises:
            SessionRejectedError: If ``token`` was refused by the service
            RequestError: If the request failed with any other HTTP error
            InvalidServerResponseError: If the body is not a JSON object
        """
        headers = {
            HttpHeader.ACCEPT.value: accept.value,
            HttpHeader.CONTENT_TYPE.value: ContentType.JSON.value,
        }
        if token:
            headers[HttpHeader.AUTHORIZATION.value] = _auth_header_value(token)

        body = json.dumps(data).encode("utf-8") if data is not None else None
        url = self._build_url(path, params)

        logger.debug("%s %s (%s)", method.value, path, command_type.value)

        with self._http_client.request_context(
            method, url, headers=headers, command_type=command_type, body=body
        ) as response:
            status = response.status
            payload = response.data

        context = {"method": command_type.value, "http-code": status}

        if status in self.error_policy.session_rejected_statuses and token:
            raise SessionRejectedError(
                "{} was rejected: session token not accepted".format(
                    command_type.value
                ),
                context,
            )

        if status >= 400:
            error_message = payload.decode("utf-8", errors="replace")[:500]
            context["error-message"] = error_message
            raise RequestError(
                "{} failed with HTTP {}".format(command_type.value, status), context
            )

        try:
            envelope = json.loads(payload.decode("utf-8")) if payload else {}
        except ValueError as e:
            raise InvalidServerResponseError(
                "{} returned a body that is not JSON".format(command_type.value),
                context,
            ) from e

        if not isinstance(envelope, dict):
            raise InvalidServerResponseError(
                "{} returned an unexpected body".format(command_type.value), context
            )

        code = envelope.get("code")
        if (
            token
            and not envelope.get("success", False)
            and self.error_policy.is_session_rejected_code(code)
        ):
            context["error-code"] = code
            raise SessionRejectedError(
                envelope.get("message") or "Session token is no longer valid", context
            )

        return envelope

    def login(
        self,
        login_body: Dict[str, Any],
        warehouse: Optional[str] = None,
        database: Optional[str] = None,
        schema: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {
            "warehouse": warehouse,
            "databaseName": database,
            "schemaName": schema,
            "roleName": role,
        }
        return self._make_request(
            HttpMethod.POST,
            LOGIN_PATH,
            CommandType.LOGIN,
            data=login_body,
            params=params,
        )

    def renew_session(
        self, master_token: str, renew_body: Dict[str, Any]
    ) -> Dict[str, Any]:
        return self._make_request(
            HttpMethod.POST,
            TOKEN_REQUEST_PATH,
            CommandType.RENEW_SESSION,
            data=renew_body,
            token=master_token,
        )

    def close_session(self, session_token: str) -> Dict[str, Any]:
        return self._make_request(
            HttpMethod.POST,
            SESSION_PATH,
            CommandType.CLOSE_SESSION,
            token=session_token,
            params={"delete": "true"},
        )

    def submit_query(
        self, session_token: str, query_body: Dict[str, Any], request_id: str
    ) -> Dict[str, Any]:
        # requestId is fixed per statement so a resubmission is recognised as the same request
        return self._make_request(
            HttpMethod.POST,
            QUERY_PATH,
            CommandType.EXECUTE_STATEMENT,
            data=query_body,
            token=session_token,
            params={"requestId": request_id, "clientStartTime": int(time.time())},
            accept=ContentType.SNOWFLAKE,
        )

    def get_query_result(self, session_token: str, result_path: str) -> Dict[str, Any]:
        return self._make_request(
            HttpMethod.GET,
            result_path,
            CommandType.GET_RESULT,
            token=session_token,
            accept=ContentType.SNOWFLAKE,
        )
