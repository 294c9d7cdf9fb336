# catsof/infra/bounded_reader.py
"""
Size-limited body reading.

The byte ceiling is enforced on bytes actually received, never on the
declared Content-Length alone: a hostile origin can omit or understate it.
When the ceiling is crossed the connection is closed immediately (not
returned to a pool, not drained) so a server streaming forever cannot hold
the socket or grow our buffers.
"""
from __future__ import annotations

from typing import AsyncIterator, Protocol

from catsof.core.errors import ImageTooLargeError
from catsof.infra.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class CancellableStream(Protocol):
    """Incremental body with an explicit abort"""

    def iter_chunks(self) -> AsyncIterator[bytes]:
        ...

    def cancel(self) -> None:
        ...


class ResponseStream:
    """
    CancellableStream over an ``aiohttp.ClientResponse``.

    ``cancel()`` calls ``response.close()``, which drops the underlying
    connection instead of releasing it for reuse.
    """

    def __init__(self, response, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._response = response
        self._chunk_size = chunk_size

    @property
    def is_incremental(self) -> bool:
        content = getattr(self._response, "content", None)
        return content is not None and hasattr(content, "iter_chunked")

    def iter_chunks(self) -> AsyncIterator[bytes]:
        return self._response.content.iter_chunked(self._chunk_size)

    async def read_all(self) -> bytes:
        return await self._response.read()

    def cancel(self) -> None:
        self._response.close()


def _too_large(max_bytes: int) -> ImageTooLargeError:
    return ImageTooLargeError(f"Image is too large (max {max_bytes // (1024 * 1024)}MB).")


async def read_stream_bounded(stream: CancellableStream, max_bytes: int) -> bytes:
    """
    Consume ``stream`` until EOF, aborting the moment more than ``max_bytes``
    have arrived.

    Raises:
        ImageTooLargeError: cumulative size exceeded ``max_bytes``
    """
    chunks: list[bytes] = []
    total = 0

    async for chunk in stream.iter_chunks():
        total += len(chunk)
        if total > max_bytes:
            stream.cancel()
            logger.warning(f"Body exceeded {max_bytes} bytes after {total} bytes, stream cancelled")
            raise _too_large(max_bytes)
        chunks.append(chunk)

    return b"".join(chunks)


async def read_bounded(response, max_bytes: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """
    Read an HTTP response body with a hard byte ceiling.

    Incremental reading with early abort is used whenever the response
    exposes a chunk iterator. A whole-body-only response is read fully and
    checked afterwards.

    Args:
        response: aiohttp.ClientResponse (or compatible)
        max_bytes: Largest accepted body size
        chunk_size: Read granularity

    Returns:
        Body bytes (len <= max_bytes)

    Raises:
        ImageTooLargeError: body larger than ``max_bytes``
    """
    stream = ResponseStream(response, chunk_size)

    if not stream.is_incremental:
        data = await stream.read_all()
        if len(data) > max_bytes:
            raise _too_large(max_bytes)
        return data

    return await read_stream_bounded(stream, max_bytes)
