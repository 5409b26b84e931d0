import gzip
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from snowflake_api.auth.retry import CommandType
from snowflake_api.backend.constants import ResultFormat
from snowflake_api.common.http import HttpMethod
from snowflake_api.common.unified_http_client import UnifiedHttpClient
from snowflake_api.exc import ChunkFetchError, RequestError

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
AUTHORIZATION_FAILURE_CODES = (401, 403)


@dataclass(frozen=True)
class ChunkDescriptor:
    """
    Where one chunk of a result set lives and how many rows it holds.

    Attributes:
        index (int): Ordinal of the chunk within the result set. The inline rowset is 0.
        row_count (int): Number of rows the server declares for the chunk.
        result_format (ResultFormat): Whether the chunk is JSON or an Arrow IPC stream.
        url (str): Presigned location of a remote chunk, None for the inline chunk.
        headers (dict): Chunk-specific access headers sent with the fetch.
        inline_rows (list): JSON rows embedded in the query response.
        inline_arrow (str): Base64 Arrow stream embedded in the query response.
    """

    index: int
    row_count: int
    result_format: ResultFormat = ResultFormat.JSON
    url: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    inline_rows: Optional[List[List[Any]]] = None
    inline_arrow: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return self.url is None

    def with_access(self, url: str, headers: Dict[str, str]) -> "ChunkDescriptor":
        return replace(self, url=url, headers=dict(headers))


@dataclass
class DownloadedChunk:
    """
    Raw bytes of a remote chunk.

    Attributes:
        index (int): Ordinal of the chunk within the result set.
        data (bytes): Chunk body, decompressed.
        row_count (int): Number of rows the chunk represents in the result.
    """

    index: int
    data: bytes
    row_count: int


@dataclass
class DownloadableResultSettings:
    """
    Settings common to each download handler.

    Attributes:
        download_timeout (int): Timeout for download requests. Default 60 secs.
        min_download_speed (float): Threshold in MB/s below which to log warning. Default 0.1 MB/s.
    """

    download_timeout: int = 60
    min_download_speed: float = 0.1


class ChunkDownloadHandler:
    def __init__(
        self,
        settings: DownloadableResultSettings,
        descriptor: ChunkDescriptor,
        http_client: UnifiedHttpClient,
        query_id: Optional[str] = None,
    ):
        self.settings = settings
        self.descriptor = descriptor
        self._http_client = http_client
        self.query_id = query_id

    def run(self) -> DownloadedChunk:
        """
        Download the chunk described by the descriptor.

        Only the descriptor's own headers are sent; a chunk never receives the
        session token.

        Raises:
            ChunkFetchError: If the storage host refused the request or it failed
        """
        descriptor = self.descriptor
        logger.debug(
            "ChunkDownloadHandler: starting download, chunk %s, row count %s",
            descriptor.index,
            descriptor.row_count,
        )

        start_time = time.time()

        try:
            with self._http_client.request_context(
                method=HttpMethod.GET,
                url=descriptor.url,
                headers=descriptor.headers,
                command_type=CommandType.FETCH_CHUNK,
                timeout=self.settings.download_timeout,
            ) as response:
                status = response.status
                body = response.data
        except RequestError as e:
            raise ChunkFetchError(
                "Failed to fetch chunk {}: {}".format(descriptor.index, e.message),
                {"query-id": self.query_id, "chunk-index": descriptor.index},
                chunk_index=descriptor.index,
            ) from e

        if status >= 400:
            reason = (
                "access to chunk {} was denied".format(descriptor.index)
                if status in AUTHORIZATION_FAILURE_CODES
                else "chunk {} fetch failed".format(descriptor.index)
            )
            raise ChunkFetchError(
                "HTTP {}: {}".format(status, reason),
                {
                    "query-id": self.query_id,
                    "chunk-index": descriptor.index,
                    "http-code": status,
                },
                chunk_index=descriptor.index,
                http_code=status,
            )

        self._log_download_metrics(
            descriptor.url, len(body), time.time() - start_time
        )

        data = ChunkDownloadHandler._decompress_data(body)

        logger.debug(
            "ChunkDownloadHandler: downloaded chunk %s, %s bytes",
            descriptor.index,
            len(data),
        )
        return DownloadedChunk(descriptor.index, data, descriptor.row_count)

    def _log_download_metrics(
        self, url: str, bytes_downloaded: int, duration_seconds: float
    ):
        """Log download speed metrics at INFO/WARN levels."""
        duration_seconds = max(duration_seconds, 1e-6)
        speed_mbps = (float(bytes_downloaded) / (1024 * 1024)) / duration_seconds

        # presigned query strings carry credentials
        url_endpoint = url.split("?")[0]
        logger.info(
            "Chunk download completed: %.4f MB/s, %d bytes in %.3fs from %s",
            speed_mbps,
            bytes_downloaded,
            duration_seconds,
            url_endpoint,
        )

        if speed_mbps < self.settings.min_download_speed:
            logger.warning(
                "Chunk download slower than threshold: %.4f MB/s (threshold: %.1f MB/s) from %s",
                speed_mbps,
                self.settings.min_download_speed,
                url_endpoint,
            )

    @staticmethod
    def _decompress_data(data: bytes) -> bytes:
        """Gunzip the body unless the transport already decoded it."""
        if data[:2] == GZIP_MAGIC:
            return gzip.decompress(data)
        return data
