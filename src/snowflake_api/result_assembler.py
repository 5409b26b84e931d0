import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, wait
from typing import Any, Callable, Dict, List, Optional, Sequence

from snowflake_api.backend.constants import (
    SSE_C_AES,
    SSE_C_ALGORITHM_HEADER,
    SSE_C_KEY_HEADER,
    ResultFormat,
)
from snowflake_api.backend.models import ColumnInfo, QueryResponse
from snowflake_api.cloudfetch.download_manager import (
    ChunkDecoder,
    ChunkDownloadManager,
    DecodedChunk,
)
from snowflake_api.cloudfetch.downloader import (
    AUTHORIZATION_FAILURE_CODES,
    ChunkDescriptor,
    DownloadableResultSettings,
)
from snowflake_api.conversion import (
    ConversionError,
    SqlTypeConverter,
    arrow_table_from_ipc,
    decode_base64_arrow,
    decode_json_chunk,
)
from snowflake_api.exc import (
    ChunkDecodeError,
    ChunkFetchError,
    MaterializationCancelledError,
    RowCountMismatchError,
)
from snowflake_api.result_set import ResultSet

logger = logging.getLogger(__name__)

DEFAULT_MAX_DOWNLOAD_THREADS = 10
# How often a materialization waiting on downloads looks at its cancel event
CANCEL_CHECK_INTERVAL_SECS = 0.1

# Returns a descriptor with fresh access for the chunk at the given index
ChunkRefresher = Callable[[int], ChunkDescriptor]


def chunk_access_headers(response: QueryResponse) -> Dict[str, str]:
    """Headers every remote chunk of ``response`` must be fetched with."""
    if response.chunk_headers:
        return dict(response.chunk_headers)
    if response.qrmk:
        return {SSE_C_ALGORITHM_HEADER: SSE_C_AES, SSE_C_KEY_HEADER: response.qrmk}
    return {}


def descriptors_from_response(response: QueryResponse) -> List[ChunkDescriptor]:
    """
    Describe every chunk of a completed query response.

    The rowset embedded in the response is chunk 0, even when it is empty; remote
    chunks follow in the order the server lists them. The embedded chunk holds
    whatever part of ``total`` the remote chunks do not.
    """
    headers = chunk_access_headers(response)
    remote_rows = sum(c.row_count for c in response.chunks)

    descriptors = [
        ChunkDescriptor(
            index=0,
            row_count=max(response.total - remote_rows, 0),
            result_format=response.result_format,
            inline_rows=response.rowset or [],
            inline_arrow=response.rowset_base64,
        )
    ]
    for i, chunk in enumerate(response.chunks, start=1):
        descriptors.append(
            ChunkDescriptor(
                index=i,
                row_count=chunk.row_count,
                result_format=response.result_format,
                url=chunk.url,
                headers=headers,
            )
        )
    return descriptors


def make_chunk_decoder(
    schema: Sequence[ColumnInfo], converter: SqlTypeConverter
) -> ChunkDecoder:
    """Build the decoder turning a fetched chunk body into converted rows."""

    def decode(descriptor: ChunkDescriptor, data: bytes) -> List[List[Any]]:
        if descriptor.result_format == ResultFormat.ARROW:
            table = arrow_table_from_ipc(data)
            return converter.convert_arrow_table(table, schema)
        return converter.convert_rows(decode_json_chunk(data), schema)

    return decode


class ResultAssembler:
    """
    Materializes a result set from its chunk descriptors.

    Remote chunks are fetched concurrently on at most ``max_download_threads``
    threads and may complete in any order; rows are always placed by chunk index.
    The assembled set is only handed out once every chunk was decoded and the row
    count matches the total the server declared.
    """

    def __init__(
        self,
        http_client,
        max_download_threads: int = DEFAULT_MAX_DOWNLOAD_THREADS,
        settings: Optional[DownloadableResultSettings] = None,
    ):
        if max_download_threads < 1:
            raise ValueError("max_download_threads must be at least 1")
        self._http_client = http_client
        self.max_download_threads = max_download_threads
        self.settings = settings or DownloadableResultSettings()

    def materialize(
        self,
        descriptors: Sequence[ChunkDescriptor],
        schema: Sequence[ColumnInfo],
        total_row_count: int,
        converter: Optional[SqlTypeConverter] = None,
        query_id: Optional[str] = None,
        refresher: Optional[ChunkRefresher] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ResultSet:
        """
        Fetch, decode and order every chunk.

        A chunk refused with 401 or 403 is re-described through ``refresher`` and
        fetched once more; a second refusal fails the materialization.

        Raises:
            ChunkFetchError: If a chunk could not be downloaded
            ChunkDecodeError: If a chunk body does not decode against the schema
            RowCountMismatchError: If the decoded rows do not add up to the total
            MaterializationCancelledError: If ``cancel_event`` was set while waiting
        """
        converter = converter or SqlTypeConverter()
        result_set = ResultSet(schema, total_row_count, descriptors, query_id)
        positions = {d.index: p for p, d in enumerate(result_set.chunks)}
        decoder = make_chunk_decoder(result_set.schema, converter)

        for descriptor in result_set.chunks:
            if descriptor.is_inline:
                rows = self._decode_inline(descriptor, result_set.schema, converter)
                result_set._settle_chunk(positions[descriptor.index], rows)

        remote = [d for d in result_set.chunks if not d.is_inline]
        if remote:
            logger.debug(
                "ResultAssembler: fetching %s remote chunks for query %s",
                len(remote),
                query_id,
            )
            manager = ChunkDownloadManager(
                self._http_client,
                min(self.max_download_threads, len(remote)),
                decoder,
                settings=self.settings,
                query_id=query_id,
            )
            try:
                self._collect(
                    manager, remote, result_set, positions, refresher, cancel_event
                )
            finally:
                manager.shutdown()

        actual = result_set._settled_row_count()
        if actual != total_row_count:
            raise RowCountMismatchError(
                "Result of query {} has {} rows, expected {}".format(
                    query_id, actual, total_row_count
                ),
                {"query-id": query_id},
                expected=total_row_count,
                actual=actual,
            )

        result_set._mark_complete()
        logger.debug(
            "ResultAssembler: materialized %s rows in %s chunks for query %s",
            actual,
            len(result_set.chunks),
            query_id,
        )
        return result_set

    def _collect(
        self,
        manager: ChunkDownloadManager,
        remote: List[ChunkDescriptor],
        result_set: ResultSet,
        positions: Dict[int, int],
        refresher: Optional[ChunkRefresher],
        cancel_event: Optional[threading.Event],
    ):
        pending: Dict["Future[DecodedChunk]", ChunkDescriptor] = {
            manager.submit(d): d for d in remote
        }
        refreshed = set()
        timeout = CANCEL_CHECK_INTERVAL_SECS if cancel_event is not None else None

        while pending:
            if cancel_event is not None and cancel_event.is_set():
                raise MaterializationCancelledError(
                    "Materialization of query {} was cancelled".format(
                        result_set.query_id
                    ),
                    {"query-id": result_set.query_id, "pending-chunks": len(pending)},
                )

            done, _ = wait(list(pending), timeout=timeout, return_when=FIRST_COMPLETED)
            for future in done:
                descriptor = pending.pop(future)
                try:
                    decoded = future.result()
                except ChunkFetchError as e:
                    if (
                        e.http_code not in AUTHORIZATION_FAILURE_CODES
                        or refresher is None
                        or descriptor.index in refreshed
                    ):
                        raise
                    logger.info(
                        "Access to chunk %s of query %s expired, refreshing",
                        descriptor.index,
                        result_set.query_id,
                    )
                    refreshed.add(descriptor.index)
                    fresh = refresher(descriptor.index)
                    pending[manager.resubmit(fresh)] = fresh
                    continue

                if len(decoded.rows) != descriptor.row_count:
                    logger.warning(
                        "Chunk %s of query %s has %s rows, declared %s",
                        decoded.index,
                        result_set.query_id,
                        len(decoded.rows),
                        descriptor.row_count,
                    )
                result_set._settle_chunk(positions[decoded.index], decoded.rows)

    def _decode_inline(
        self,
        descriptor: ChunkDescriptor,
        schema: Sequence[ColumnInfo],
        converter: SqlTypeConverter,
    ) -> List[List[Any]]:
        try:
            if descriptor.result_format == ResultFormat.ARROW:
                table = decode_base64_arrow(descriptor.inline_arrow)
                if table is None:
                    return []
                return converter.convert_arrow_table(table, schema)
            return converter.convert_rows(descriptor.inline_rows or [], schema)
        except ConversionError as e:
            raise ChunkDecodeError(
                "Failed to decode chunk {}: {}".format(descriptor.index, e),
                {"chunk-index": descriptor.index},
                chunk_index=descriptor.index,
            ) from e
