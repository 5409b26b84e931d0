"""
Base models for the warehouse REST protocol.

These models define the common structures used in requests and responses.
"""

from typing import Any, Dict, Optional
from dataclasses import dataclass


@dataclass
class ServiceError:
    """Error information returned by the service."""

    message: str
    code: Optional[str] = None
    sql_state: Optional[str] = None
    query_id: Optional[str] = None


@dataclass
class SessionInfo:
    """Namespace the service bound the session to."""

    database: Optional[str] = None
    schema: Optional[str] = None
    warehouse: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SessionInfo":
        data = data or {}
        return cls(
            database=data.get("databaseName"),
            schema=data.get("schemaName"),
            warehouse=data.get("warehouseName"),
            role=data.get("roleName"),
        )


@dataclass
class ColumnInfo:
    """Declared type of one result column (an entry of ``rowtype``)."""

    name: str
    type: str
    nullable: bool = True
    precision: Optional[int] = None
    scale: Optional[int] = None
    length: Optional[int] = None
    byte_length: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnInfo":
        return cls(
            name=data.get("name", ""),
            type=str(data.get("type", "text")).upper(),
            nullable=data.get("nullable", True),
            precision=data.get("precision"),
            scale=data.get("scale"),
            length=data.get("length"),
            byte_length=data.get("byteLength"),
        )


@dataclass
class ChunkInfo:
    """A remote chunk of the result set as listed in the query response."""

    url: str
    row_count: int
    uncompressed_size: int = 0
    compressed_size: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkInfo":
        return cls(
            url=data["url"],
            row_count=data.get("rowCount", 0),
            uncompressed_size=data.get("uncompressedSize", 0),
            compressed_size=data.get("compressedSize", 0),
        )
