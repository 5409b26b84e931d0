"""
Request models for the warehouse REST protocol.

These models define the structures used in request bodies.
"""

import platform
import sys
from typing import Any, Dict, Optional
from dataclasses import dataclass, field

from snowflake_api.backend.constants import CLIENT_APP_ID, CLIENT_APP_VERSION


def _client_environment(application: Optional[str]) -> Dict[str, str]:
    return {
        "APPLICATION": application or CLIENT_APP_ID,
        "OS": platform.system(),
        "OS_VERSION": platform.platform(),
        "PYTHON_VERSION": platform.python_version(),
        "PYTHON_RUNTIME": sys.implementation.name,
        "OCSP_MODE": "FAIL_OPEN",
    }


@dataclass
class LoginRequest:
    """Representation of a login handshake.

    Credential fields (``AUTHENTICATOR``, ``TOKEN``, ``PASSWORD``) are added by an
    AuthProvider once ``to_dict`` has been called.
    """

    account_name: str
    login_name: Optional[str] = None
    application: Optional[str] = None
    session_parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "CLIENT_APP_ID": CLIENT_APP_ID,
            "CLIENT_APP_VERSION": CLIENT_APP_VERSION,
            "SVN_REVISION": "",
            "ACCOUNT_NAME": self.account_name,
            "SESSION_PARAMETERS": {
                "CLIENT_VALIDATE_DEFAULT_PARAMETERS": True,
                **self.session_parameters,
            },
            "CLIENT_ENVIRONMENT": _client_environment(self.application),
        }
        if self.login_name:
            data["LOGIN_NAME"] = self.login_name
        return {"data": data}


@dataclass
class RenewSessionRequest:
    """Representation of a session token renewal authorized by the master token."""

    old_session_token: str

    def to_dict(self) -> Dict[str, Any]:
        return {"oldSessionToken": self.old_session_token, "requestType": "RENEW"}


@dataclass
class QueryRequest:
    """Representation of a request to run a SQL statement."""

    sql_text: str
    sequence_id: int
    bindings: Optional[Dict[str, Dict[str, Any]]] = None
    parameters: Optional[Dict[str, str]] = None
    async_exec: bool = True
    is_internal: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "sqlText": self.sql_text,
            "asyncExec": self.async_exec,
            "sequenceId": self.sequence_id,
            "isInternal": self.is_internal,
        }

        if self.bindings:
            result["bindings"] = self.bindings

        if self.parameters:
            result["parameters"] = self.parameters

        return result
