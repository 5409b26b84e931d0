"""
Type conversion utilities for result chunks.

This module converts the cell values of JSON and Arrow result chunks to Python
types based on the ``rowtype`` column metadata of the query response.
"""

import base64
import datetime
import decimal
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import pyarrow
from dateutil import tz

from snowflake_api.backend.models import ColumnInfo

logger = logging.getLogger(__name__)

_EPOCH = datetime.datetime(1970, 1, 1)
_EPOCH_DATE = datetime.date(1970, 1, 1)
_TZ_OFFSET_BIAS_MINUTES = 1440


class ConversionError(ValueError):
    """Raised when a cell cannot be converted to the type its column declares."""


class SqlType:
    """Column type names as reported in ``rowtype``."""

    FIXED = "FIXED"
    REAL = "REAL"
    TEXT = "TEXT"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP_NTZ = "TIMESTAMP_NTZ"
    TIMESTAMP_LTZ = "TIMESTAMP_LTZ"
    TIMESTAMP_TZ = "TIMESTAMP_TZ"
    BINARY = "BINARY"
    VARIANT = "VARIANT"
    OBJECT = "OBJECT"
    ARRAY = "ARRAY"

    TIMESTAMPS = (TIMESTAMP_NTZ, TIMESTAMP_LTZ, TIMESTAMP_TZ)


def _split_seconds(value: str):
    """Split ``"<seconds>.<fraction>"`` into whole seconds and microseconds."""
    seconds = decimal.Decimal(value)
    whole = int(seconds.to_integral_value(rounding=decimal.ROUND_FLOOR))
    microseconds = int((seconds - whole) * 1_000_000)
    return whole, microseconds


def _naive_from_epoch(seconds: int, microseconds: int) -> datetime.datetime:
    return _EPOCH + datetime.timedelta(seconds=seconds, microseconds=microseconds)


def _offset_zone(biased_minutes: int) -> datetime.tzinfo:
    return tz.tzoffset(None, (biased_minutes - _TZ_OFFSET_BIAS_MINUTES) * 60)


class SqlTypeConverter:
    """
    Converts one cell to the Python value of its column type.

    :param session_timezone:
        tzinfo TIMESTAMP_LTZ values are rendered in, defaults to UTC.
    """

    def __init__(self, session_timezone: Optional[datetime.tzinfo] = None):
        self.session_timezone = session_timezone or tz.UTC

    @classmethod
    def for_timezone_name(cls, name: Optional[str]) -> "SqlTypeConverter":
        zone = tz.gettz(name) if name else None
        if name and zone is None:
            logger.warning("Unknown session time zone %s, using UTC", name)
        return cls(zone)

    # JSON rowsets carry every cell as a string
    def _fixed(self, value: str, column: ColumnInfo):
        if column.scale:
            return decimal.Decimal(value)
        return int(value)

    def _boolean(self, value: str, column: ColumnInfo):
        if isinstance(value, bool):
            return value
        return str(value).upper() in ("1", "TRUE")

    def _date(self, value: str, column: ColumnInfo):
        return _EPOCH_DATE + datetime.timedelta(days=int(value))

    def _time(self, value: str, column: ColumnInfo):
        seconds, microseconds = _split_seconds(value)
        return _naive_from_epoch(seconds, microseconds).time()

    def _timestamp_ntz(self, value: str, column: ColumnInfo):
        return _naive_from_epoch(*_split_seconds(value))

    def _timestamp_ltz(self, value: str, column: ColumnInfo):
        naive = _naive_from_epoch(*_split_seconds(value))
        return naive.replace(tzinfo=tz.UTC).astimezone(self.session_timezone)

    def _timestamp_tz(self, value: str, column: ColumnInfo):
        epoch, _, offset = value.partition(" ")
        if not offset:
            return self._timestamp_ltz(epoch, column)
        naive = _naive_from_epoch(*_split_seconds(epoch))
        return naive.replace(tzinfo=tz.UTC).astimezone(_offset_zone(int(offset)))

    TYPE_MAPPING: Dict[str, Callable] = {
        SqlType.FIXED: _fixed,
        SqlType.REAL: lambda self, v, c: float(v),
        SqlType.TEXT: lambda self, v, c: v,
        SqlType.BOOLEAN: _boolean,
        SqlType.DATE: _date,
        SqlType.TIME: _time,
        SqlType.TIMESTAMP_NTZ: _timestamp_ntz,
        SqlType.TIMESTAMP_LTZ: _timestamp_ltz,
        SqlType.TIMESTAMP_TZ: _timestamp_tz,
        SqlType.BINARY: lambda self, v, c: bytes.fromhex(v),
        # Semi-structured values are returned as their JSON text
        SqlType.VARIANT: lambda self, v, c: v,
        SqlType.OBJECT: lambda self, v, c: v,
        SqlType.ARRAY: lambda self, v, c: v,
    }

    def convert_value(self, value: Optional[str], column: ColumnInfo) -> Any:
        """
        Convert a string cell of a JSON rowset.

        Raises:
            ConversionError: If the value does not parse as the column type
        """
        if value is None:
            return None

        converter_func = self.TYPE_MAPPING.get(column.type)
        if converter_func is None:
            return value

        try:
            return converter_func(self, value, column)
        except (AttributeError, ValueError, TypeError, ArithmeticError) as e:
            raise ConversionError(
                "Cannot convert {!r} to {} for column {}: {}".format(
                    value, column.type, column.name, e
                )
            ) from e

    def convert_rows(
        self, rows: Sequence[Sequence[Optional[str]]], columns: Sequence[ColumnInfo]
    ) -> List[List[Any]]:
        converted = []
        for row in rows:
            if len(row) != len(columns):
                raise ConversionError(
                    "Row has {} values, schema declares {} columns".format(
                        len(row), len(columns)
                    )
                )
            converted.append(
                [self.convert_value(v, c) for v, c in zip(row, columns)]
            )
        return converted

    # Arrow chunks carry typed values; scaled numbers and timestamps need rescaling
    def convert_arrow_value(self, value: Any, column: ColumnInfo) -> Any:
        if value is None:
            return None

        scale = column.scale or 0
        try:
            if column.type == SqlType.FIXED:
                if scale and isinstance(value, int):
                    return decimal.Decimal(value).scaleb(-scale)
                return value
            if column.type == SqlType.DATE:
                if isinstance(value, int):
                    return _EPOCH_DATE + datetime.timedelta(days=value)
                return value
            if column.type == SqlType.TIME and isinstance(value, int):
                seconds = decimal.Decimal(value).scaleb(-scale)
                return self._time(str(seconds), column)
            if column.type in SqlType.TIMESTAMPS:
                return self._arrow_timestamp(value, column, scale)
            if column.type == SqlType.BINARY and isinstance(value, str):
                return bytes.fromhex(value)
        except (AttributeError, KeyError, ValueError, TypeError, ArithmeticError) as e:
            raise ConversionError(
                "Cannot convert {!r} to {} for column {}: {}".format(
                    value, column.type, column.name, e
                )
            ) from e
        return value

    def _arrow_timestamp(self, value: Any, column: ColumnInfo, scale: int):
        offset = None
        if isinstance(value, dict):
            # struct of epoch seconds, nanosecond fraction and optional biased offset
            epoch = decimal.Decimal(value["epoch"])
            if "fraction" in value and value["fraction"] is not None:
                epoch += decimal.Decimal(value["fraction"]).scaleb(-9)
            else:
                epoch = epoch.scaleb(-scale)
            offset = value.get("timezone")
        elif isinstance(value, datetime.datetime):
            return value
        else:
            epoch = decimal.Decimal(value).scaleb(-scale)

        text = str(epoch)
        if column.type == SqlType.TIMESTAMP_NTZ:
            return self._timestamp_ntz(text, column)
        if column.type == SqlType.TIMESTAMP_TZ and offset is not None:
            return self._timestamp_tz("{} {}".format(text, offset), column)
        return self._timestamp_ltz(text, column)

    def convert_arrow_table(
        self, table: "pyarrow.Table", columns: Sequence[ColumnInfo]
    ) -> List[List[Any]]:
        if table.num_columns != len(columns):
            raise ConversionError(
                "Arrow chunk has {} columns, schema declares {}".format(
                    table.num_columns, len(columns)
                )
            )
        converted_columns = [
            [self.convert_arrow_value(v, c) for v in table.column(i).to_pylist()]
            for i, c in enumerate(columns)
        ]
        return [list(row) for row in zip(*converted_columns)]


def arrow_table_from_ipc(data: bytes) -> "pyarrow.Table":
    """Read an Arrow IPC stream into a table."""
    try:
        return pyarrow.ipc.open_stream(data).read_all()
    except (pyarrow.ArrowInvalid, OSError) as e:
        raise ConversionError("Failure to read Arrow IPC stream: {}".format(e)) from e


def decode_json_chunk(body: bytes) -> List[List[Optional[str]]]:
    """Parse a remote JSON chunk: rows separated by commas, without the outer brackets."""
    text = body.decode("utf-8").strip()
    if not text:
        return []
    try:
        rows = json.loads("[" + text + "]")
    except ValueError as e:
        raise ConversionError("Malformed JSON chunk: {}".format(e)) from e
    if not all(isinstance(row, list) for row in rows):
        raise ConversionError("JSON chunk rows must be arrays")
    return rows


def decode_base64_arrow(rowset_base64: str) -> Optional["pyarrow.Table"]:
    """Decode the inline Arrow rowset, None when the first chunk holds no rows."""
    if not rowset_base64:
        return None
    try:
        data = base64.b64decode(rowset_base64)
    except ValueError as e:
        raise ConversionError("Inline Arrow rowset is not valid base64") from e
    return arrow_table_from_ipc(data)
