import logging
from enum import Enum
from typing import Any, Iterator, List, Optional, Sequence, Tuple

import pandas
import pyarrow

from snowflake_api.backend.models import ColumnInfo
from snowflake_api.cloudfetch.downloader import ChunkDescriptor
from snowflake_api.conversion import SqlType
from snowflake_api.exc import ProgrammingError
from snowflake_api.types import Row

logger = logging.getLogger(__name__)


class ResultSetState(Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"


def _arrow_type(column: ColumnInfo) -> "pyarrow.DataType":
    if column.type == SqlType.FIXED:
        if column.scale:
            return pyarrow.decimal128(column.precision or 38, column.scale)
        return pyarrow.int64()
    mapping = {
        SqlType.REAL: pyarrow.float64(),
        SqlType.BOOLEAN: pyarrow.bool_(),
        SqlType.DATE: pyarrow.date32(),
        SqlType.TIME: pyarrow.time64("us"),
        SqlType.TIMESTAMP_NTZ: pyarrow.timestamp("us"),
        SqlType.TIMESTAMP_LTZ: pyarrow.timestamp("us", tz="UTC"),
        SqlType.TIMESTAMP_TZ: pyarrow.timestamp("us", tz="UTC"),
        SqlType.BINARY: pyarrow.binary(),
    }
    return mapping.get(column.type, pyarrow.string())


class ResultSet:
    """
    Rows of one statement, materialized chunk by chunk in ordinal order.

    Iteration is one-pass: rows are handed out once, and reading them again
    requires executing the statement again.
    """

    def __init__(
        self,
        schema: Sequence[ColumnInfo],
        total_row_count: int,
        chunks: Sequence[ChunkDescriptor],
        query_id: Optional[str] = None,
    ):
        self.schema: List[ColumnInfo] = list(schema)
        self.total_row_count = total_row_count
        self.chunks: List[ChunkDescriptor] = sorted(chunks, key=lambda c: c.index)
        self.query_id = query_id

        self._chunk_rows: List[Optional[List[List[Any]]]] = [None] * len(self.chunks)
        self._state = ResultSetState.PENDING
        self._row_iterator: Optional[Iterator[Row]] = None
        self._iterated = False
        self._row_factory = Row(*[c.name for c in self.schema])

    @property
    def state(self) -> ResultSetState:
        return self._state

    @property
    def description(self) -> List[Tuple]:
        """PEP-249 description: (name, type_code, display_size, internal_size, precision, scale, null_ok)."""
        return [
            (c.name, c.type, None, c.length, c.precision, c.scale, c.nullable)
            for c in self.schema
        ]

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.schema]

    def _settle_chunk(self, position: int, rows: List[List[Any]]):
        """Place the decoded rows of the chunk at ``position`` in ordinal order."""
        self._chunk_rows[position] = rows
        self._state = ResultSetState.PARTIAL

    def _settled_row_count(self) -> int:
        return sum(len(rows) for rows in self._chunk_rows if rows is not None)

    def _mark_complete(self):
        self._state = ResultSetState.COMPLETE

    def _rows(self) -> Iterator[Row]:
        for position, rows in enumerate(self._chunk_rows):
            # Hand each chunk out once so its memory can be reclaimed
            self._chunk_rows[position] = None
            for values in rows or []:
                yield self._row_factory(*values)

    def _iterator(self) -> Iterator[Row]:
        if self._state is not ResultSetState.COMPLETE:
            raise ProgrammingError("Result set is not materialized")
        if self._row_iterator is None:
            self._row_iterator = self._rows()
        return self._row_iterator

    def __iter__(self) -> Iterator[Row]:
        if self._iterated:
            raise ProgrammingError(
                "Result rows can only be iterated once, execute the statement again"
            )
        iterator = self._iterator()
        self._iterated = True
        return iterator

    def fetchone(self) -> Optional[Row]:
        """Fetch the next row of the result set, None when it is exhausted."""
        return next(self._iterator(), None)

    def fetchmany(self, size: int) -> List[Row]:
        """Fetch the next ``size`` rows. An empty list is returned when no more rows are available."""
        if size < 0:
            raise ValueError(
                "size argument for fetchmany is %s but must be >= 0" % size
            )
        iterator = self._iterator()
        rows = []
        for _ in range(size):
            row = next(iterator, None)
            if row is None:
                break
            rows.append(row)
        return rows

    def fetchall(self) -> List[Row]:
        """Fetch all (remaining) rows of the result set."""
        return list(self._iterator())

    def to_arrow(self) -> "pyarrow.Table":
        """Return the (remaining) rows as an Arrow table. Consumes the rows."""
        rows = self.fetchall()
        arrays = [
            pyarrow.array([row[i] for row in rows], type=_arrow_type(column))
            for i, column in enumerate(self.schema)
        ]
        return pyarrow.Table.from_arrays(arrays, names=self.column_names)

    def to_pandas(self) -> "pandas.DataFrame":
        """Return the (remaining) rows as a DataFrame. Consumes the rows."""
        table = self.to_arrow()

        # Need to use nullable types, as otherwise type can change when there are missing values.
        # See https://arrow.apache.org/docs/python/pandas.html#nullable-types
        dtype_mapping = {
            pyarrow.int8(): pandas.Int8Dtype(),
            pyarrow.int16(): pandas.Int16Dtype(),
            pyarrow.int32(): pandas.Int32Dtype(),
            pyarrow.int64(): pandas.Int64Dtype(),
            pyarrow.uint8(): pandas.UInt8Dtype(),
            pyarrow.uint16(): pandas.UInt16Dtype(),
            pyarrow.uint32(): pandas.UInt32Dtype(),
            pyarrow.uint64(): pandas.UInt64Dtype(),
            pyarrow.bool_(): pandas.BooleanDtype(),
            pyarrow.float32(): pandas.Float32Dtype(),
            pyarrow.float64(): pandas.Float64Dtype(),
            pyarrow.string(): pandas.StringDtype(),
        }

        # to_pandas cannot handle duplicate column names
        table_renamed = table.rename_columns([str(c) for c in range(table.num_columns)])
        df = table_renamed.to_pandas(
            types_mapper=dtype_mapping.get,
            date_as_object=True,
            timestamp_as_object=True,
        )
        df.columns = self.column_names
        return df

    def __repr__(self):
        return "ResultSet(query_id={}, rows={}, chunks={}, state={})".format(
            self.query_id, self.total_row_count, len(self.chunks), self._state.value
        )
