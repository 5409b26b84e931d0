"""
Models for the warehouse REST protocol.

This package contains data models for requests and responses of the login,
session and query endpoints.
"""

from snowflake_api.backend.models.base import (
    ChunkInfo,
    ColumnInfo,
    ServiceError,
    SessionInfo,
)
from snowflake_api.backend.models.requests import (
    LoginRequest,
    QueryRequest,
    RenewSessionRequest,
)
from snowflake_api.backend.models.responses import (
    LoginResponse,
    QueryResponse,
    RenewSessionResponse,
)

__all__ = [
    # Base models
    "ChunkInfo",
    "ColumnInfo",
    "ServiceError",
    "SessionInfo",
    # Request models
    "LoginRequest",
    "QueryRequest",
    "RenewSessionRequest",
    # Response models
    "LoginResponse",
    "QueryResponse",
    "RenewSessionResponse",
]
