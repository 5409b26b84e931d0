"""
Response models for the warehouse REST protocol.

Every endpoint answers with the same envelope: ``{"code", "message", "success", "data"}``.
These models unpack the envelope into typed structures.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from snowflake_api.backend.constants import (
    QUERY_IN_PROGRESS_ASYNC_CODE,
    QUERY_IN_PROGRESS_CODE,
    ResultFormat,
)
from snowflake_api.backend.models.base import (
    ChunkInfo,
    ColumnInfo,
    ServiceError,
    SessionInfo,
)


def _parse_code(response: Dict[str, Any]) -> Optional[str]:
    code = response.get("code")
    return str(code) if code is not None else None


def _parse_error(response: Dict[str, Any]) -> Optional[ServiceError]:
    """Parse the error of an unsuccessful envelope, None if it succeeded."""
    if response.get("success", False):
        return None

    data = response.get("data") or {}
    error_code = data.get("errorCode") or _parse_code(response)
    return ServiceError(
        message=response.get("message") or "Unknown error",
        code=str(error_code) if error_code is not None else None,
        sql_state=data.get("sqlState"),
        query_id=data.get("queryId"),
    )


@dataclass
class LoginResponse:
    """Representation of the response to a login handshake."""

    session_token: str
    master_token: str
    validity_secs: int
    master_validity_secs: int
    session_id: Optional[str] = None
    session_info: SessionInfo = field(default_factory=SessionInfo)
    parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, response: Dict[str, Any]) -> "LoginResponse":
        data = response.get("data") or {}
        parameters = {
            p["name"]: p.get("value")
            for p in data.get("parameters") or []
            if "name" in p
        }
        session_id = data.get("sessionId")
        return cls(
            session_token=data["token"],
            master_token=data["masterToken"],
            validity_secs=data.get("validityInSeconds", 3600),
            master_validity_secs=data.get("masterValidityInSeconds", 14400),
            session_id=str(session_id) if session_id is not None else None,
            session_info=SessionInfo.from_dict(data.get("sessionInfo")),
            parameters=parameters,
        )


@dataclass
class RenewSessionResponse:
    """Representation of the response to a session token renewal."""

    session_token: str
    validity_secs: int
    master_token: Optional[str] = None
    master_validity_secs: Optional[int] = None
    session_id: Optional[str] = None

    @classmethod
    def from_dict(cls, response: Dict[str, Any]) -> "RenewSessionResponse":
        data = response.get("data") or {}
        session_id = data.get("sessionId")
        return cls(
            session_token=data["sessionToken"],
            validity_secs=data.get("validityInSecondsST", 3600),
            master_token=data.get("masterToken"),
            master_validity_secs=data.get("validityInSecondsMT"),
            session_id=str(session_id) if session_id is not None else None,
        )


@dataclass
class QueryResponse:
    """Representation of the response to a query submission or a result poll."""

    success: bool
    code: Optional[str] = None
    query_id: Optional[str] = None
    error: Optional[ServiceError] = None
    get_result_url: Optional[str] = None
    query_aborts_after_secs: Optional[int] = None
    columns: List[ColumnInfo] = field(default_factory=list)
    rowset: Optional[List[List[Any]]] = None
    rowset_base64: Optional[str] = None
    total: int = 0
    returned: int = 0
    result_format: ResultFormat = ResultFormat.JSON
    chunks: List[ChunkInfo] = field(default_factory=list)
    qrmk: Optional[str] = None
    chunk_headers: Optional[Dict[str, str]] = None

    @property
    def is_in_progress(self) -> bool:
        return self.code in (QUERY_IN_PROGRESS_CODE, QUERY_IN_PROGRESS_ASYNC_CODE)

    @classmethod
    def from_dict(cls, response: Dict[str, Any]) -> "QueryResponse":
        data = response.get("data") or {}
        code = _parse_code(response)
        success = bool(response.get("success", False))

        # In-progress answers come back as unsuccessful envelopes; they are not errors
        in_progress = code in (QUERY_IN_PROGRESS_CODE, QUERY_IN_PROGRESS_ASYNC_CODE)
        error = None if in_progress else _parse_error(response)

        return cls(
            success=success,
            code=code,
            query_id=data.get("queryId"),
            error=error,
            get_result_url=data.get("getResultUrl"),
            query_aborts_after_secs=data.get("queryAbortsAfterSecs"),
            columns=[ColumnInfo.from_dict(c) for c in data.get("rowtype") or []],
            rowset=data.get("rowset"),
            rowset_base64=data.get("rowsetBase64") or None,
            total=data.get("total") or 0,
            returned=data.get("returned") or 0,
            result_format=ResultFormat.from_response(data.get("queryResultFormat")),
            chunks=[ChunkInfo.from_dict(c) for c in data.get("chunks") or []],
            qrmk=data.get("qrmk"),
            chunk_headers=data.get("chunkHeaders"),
        )
