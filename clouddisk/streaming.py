"""
Byte-range streaming for downloads and media playback

A request moves through three steps:

1. ``RangeStreamer.plan`` turns (file size, Range header, inline flag,
   video flag) into a status code and an inclusive byte range, or raises
   ``RangeNotSatisfiableError``.
2. ``RangeStreamer.open`` stats the file, builds the headers, opens it at
   the start offset and reads the first chunk. Anything failing up to here
   is reported to the client as a normal error response.
3. Iterating the returned ``FileStream`` yields exactly ``end - start + 1``
   bytes. Headers are already on the wire by then, so a failure raises out
   of the iterator and the server drops the connection.

Video files never get more than one chunk per request regardless of the
requested end: a large head chunk at offset 0 for the leading metadata,
a medium chunk near the end of the file for trailing indexes, and a small
chunk anywhere else.
"""

import stat
import logging
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Tuple

import aiofiles
import aiofiles.os

from .content_types import get_mime_type, is_video
from .errors import IOFailureError, NotAFileError, NotFoundError, RangeNotSatisfiableError
from .models import StreamingConfig
from .utils import (
    content_disposition,
    create_content_range_header,
    create_response_headers,
    parse_http_range,
)

logger = logging.getLogger(__name__)


class FileStream:
    """An opened file positioned at ``start``, ready to be sent"""

    def __init__(
        self,
        handle,
        *,
        status_code: int,
        headers: Dict[str, str],
        start: int,
        end: int,
        size: int,
        read_chunk_size: int,
        first_chunk: bytes = b"",
        label: str = "",
    ):
        self._handle = handle
        self._first_chunk = first_chunk
        self._read_chunk_size = read_chunk_size
        self.status_code = status_code
        self.headers = headers
        self.start = start
        self.end = end
        self.size = size
        self.label = label
        self.bytes_sent = 0

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def closed(self) -> bool:
        return self._handle is None

    async def __aiter__(self) -> AsyncIterator[bytes]:
        remaining = self.length
        chunk, self._first_chunk = self._first_chunk, b""
        try:
            while remaining > 0:
                if not chunk:
                    if self._handle is None:
                        raise IOFailureError(f"Stream closed: {self.label}")
                    try:
                        chunk = await self._handle.read(min(self._read_chunk_size, remaining))
                    except OSError as e:
                        logger.error(f"Read failed while streaming {self.label}: {e}")
                        raise IOFailureError(f"Failed to read file: {self.label}") from e
                    if not chunk:
                        # File shrank under us; Content-Length can no longer be honoured
                        logger.error(f"File truncated while streaming {self.label}")
                        raise IOFailureError(f"File changed while streaming: {self.label}")

                chunk = chunk[:remaining]
                remaining -= len(chunk)
                self.bytes_sent += len(chunk)
                yield chunk
                chunk = b""

            logger.debug(f"Streamed {self.label} bytes {self.start}-{self.end}/{self.size}")
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying file; safe to call more than once"""
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await handle.close()
        except OSError as e:
            logger.debug(f"Failed to close {self.label}: {e}")


class RangeStreamer:
    """Serves whole files or byte ranges with video-aware chunk sizing"""

    def __init__(self, config: Optional[StreamingConfig] = None):
        self.config = config or StreamingConfig()

    def video_end(self, start: int, size: int) -> int:
        """Effective inclusive end of a video range beginning at start"""
        config = self.config
        if start == 0:
            cap = config.videoHeadChunk
        elif start >= size - config.videoTailWindow:
            cap = config.videoTailChunk
        else:
            cap = config.videoMidChunk
        return min(start + cap - 1, size - 1)

    def plan(
        self,
        size: int,
        range_header: Optional[str],
        inline: bool,
        video: bool,
    ) -> Tuple[int, int, int]:
        """
        Decide status code and byte range for a request

        Args:
            size: File size in bytes
            range_header: Raw Range header, None or empty when absent
            inline: True for in-browser rendering, False for save-to-disk
            video: Whether the video chunk policy applies

        Returns:
            (status_code, start, end) with end inclusive; end is -1 for an
            empty file served whole

        Raises:
            RangeNotSatisfiableError: If the range is malformed or outside the file
        """
        if not range_header:
            if inline and video and size > 0:
                # Head chunk so players get metadata without the whole file
                return 206, 0, min(self.config.videoHeadChunk, size) - 1
            return 200, 0, size - 1

        http_range = parse_http_range(range_header)
        if http_range is None:
            raise RangeNotSatisfiableError(f"Malformed range: {range_header}", size)

        # Checked against the client's own end, before any video cap replaces it
        if http_range.start is not None and http_range.end is not None and http_range.end < http_range.start:
            raise RangeNotSatisfiableError(f"Range not satisfiable: {range_header}", size)

        start, end = http_range.resolve(size)
        if video and 0 <= start < size:
            end = self.video_end(start, size)

        if not (0 <= start <= end < size):
            raise RangeNotSatisfiableError(f"Range not satisfiable: {range_header}", size)

        return 206, start, end

    async def open(
        self,
        path: Path,
        range_header: Optional[str] = None,
        inline: bool = False,
        *,
        filename: Optional[str] = None,
        display_path: Optional[str] = None,
    ) -> FileStream:
        """
        Open a certified path for sending

        Args:
            path: Absolute path already validated against the storage root
            range_header: Raw Range header if the client sent one
            inline: Render in the browser instead of downloading
            filename: Name offered to the client; defaults to the file name
            display_path: Client-facing path used in messages and logs

        Returns:
            FileStream with status code and headers filled in

        Raises:
            NotFoundError, NotAFileError, RangeNotSatisfiableError, IOFailureError
        """
        label = display_path if display_path is not None else path.name

        try:
            st = await aiofiles.os.stat(path)
        except FileNotFoundError:
            raise NotFoundError(f"File not found: {label}")
        except OSError as e:
            logger.error(f"Failed to stat {path}: {e}")
            raise IOFailureError(f"Failed to read file: {label}")

        if stat.S_ISDIR(st.st_mode):
            raise NotAFileError(f"Path is a directory: {label}")
        if not stat.S_ISREG(st.st_mode):
            raise NotAFileError(f"Not a regular file: {label}")

        size = st.st_size
        content_type = get_mime_type(path)
        video = is_video(content_type, path)

        status_code, start, end = self.plan(size, range_header, inline, video)
        length = end - start + 1

        headers = create_response_headers(content_length=length, content_type=content_type)
        headers["Accept-Ranges"] = "bytes"
        if status_code == 206:
            headers["Content-Range"] = create_content_range_header(start, end, size)
        if not inline:
            headers["Content-Disposition"] = content_disposition(filename or path.name)

        handle = None
        first_chunk = b""
        try:
            handle = await aiofiles.open(path, 'rb')
            if length > 0:
                await handle.seek(start)
                first_chunk = await handle.read(min(self.config.readChunkSize, length))
                if not first_chunk:
                    raise OSError("unexpected end of file")
        except OSError as e:
            if handle is not None:
                await handle.close()
            logger.error(f"Failed to open {path} at offset {start}: {e}")
            raise IOFailureError(f"Failed to read file: {label}")

        logger.debug(
            f"Opened {label} status={status_code} range={start}-{end}/{size} "
            f"video={video} inline={inline}"
        )

        return FileStream(
            handle,
            status_code=status_code,
            headers=headers,
            start=start,
            end=end,
            size=size,
            read_chunk_size=self.config.readChunkSize,
            first_chunk=first_chunk,
            label=label,
        )
