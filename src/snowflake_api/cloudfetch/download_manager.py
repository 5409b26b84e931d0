import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from snowflake_api.cloudfetch.downloader import (
    ChunkDescriptor,
    ChunkDownloadHandler,
    DownloadableResultSettings,
)
from snowflake_api.exc import ChunkDecodeError

logger = logging.getLogger(__name__)

# Turns the bytes of a fetched chunk into rows
ChunkDecoder = Callable[[ChunkDescriptor, bytes], List[List[Any]]]


@dataclass
class DecodedChunk:
    index: int
    rows: List[List[Any]]


class ChunkDownloadManager:
    """
    Fetches and decodes remote chunks on a bounded thread pool.

    Each task downloads its chunk and then decodes it. Tasks are cached by chunk
    index, so asking for the same chunk twice returns the same future instead of
    fetching it again; ``resubmit`` replaces the cached task after the chunk's
    access headers were refreshed.
    """

    def __init__(
        self,
        http_client,
        max_download_threads: int,
        decoder: ChunkDecoder,
        settings: Optional[DownloadableResultSettings] = None,
        query_id: Optional[str] = None,
    ):
        self._http_client = http_client
        self._max_download_threads = max_download_threads
        self._decoder = decoder
        self._settings = settings or DownloadableResultSettings()
        self.query_id = query_id

        self._lock = threading.Lock()
        self._download_tasks: Dict[int, "Future[DecodedChunk]"] = {}
        self._thread_pool = ThreadPoolExecutor(
            max_workers=self._max_download_threads,
            thread_name_prefix="chunk-download",
        )

    def submit(self, descriptor: ChunkDescriptor) -> "Future[DecodedChunk]":
        """Schedule the chunk unless it is already scheduled, and return its future."""
        with self._lock:
            task = self._download_tasks.get(descriptor.index)
            if task is None:
                task = self._schedule(descriptor)
            return task

    def resubmit(self, descriptor: ChunkDescriptor) -> "Future[DecodedChunk]":
        """Schedule the chunk again with the access headers of ``descriptor``."""
        with self._lock:
            logger.debug(
                "ChunkDownloadManager: rescheduling chunk %s with fresh access",
                descriptor.index,
            )
            return self._schedule(descriptor)

    def _schedule(self, descriptor: ChunkDescriptor) -> "Future[DecodedChunk]":
        logger.debug(
            "ChunkDownloadManager: scheduling chunk %s, row count %s",
            descriptor.index,
            descriptor.row_count,
        )
        task = self._thread_pool.submit(self._fetch_and_decode, descriptor)
        self._download_tasks[descriptor.index] = task
        return task

    def _fetch_and_decode(self, descriptor: ChunkDescriptor) -> DecodedChunk:
        handler = ChunkDownloadHandler(
            settings=self._settings,
            descriptor=descriptor,
            http_client=self._http_client,
            query_id=self.query_id,
        )
        downloaded = handler.run()

        try:
            rows = self._decoder(descriptor, downloaded.data)
        except (ValueError, OSError, EOFError) as e:
            raise ChunkDecodeError(
                "Failed to decode chunk {}: {}".format(descriptor.index, e),
                {"query-id": self.query_id, "chunk-index": descriptor.index},
                chunk_index=descriptor.index,
            ) from e
        return DecodedChunk(descriptor.index, rows)

    def shutdown(self):
        """Cancel the chunks that did not start and release the pool."""
        with self._lock:
            self._download_tasks = {}
        self._thread_pool.shutdown(wait=False, cancel_futures=True)
