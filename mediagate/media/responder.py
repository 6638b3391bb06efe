"""Serve files with ETag revalidation and single byte-range support."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
from fastapi import Response, status
from fastapi.responses import StreamingResponse

from mediagate.core.errors import NotFound, RangeNotSatisfiable
from mediagate.core.logging import get_logger

logger = get_logger(component="range_responder")

CHUNK_SIZE = 64 * 1024

_RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


@dataclass(frozen=True, slots=True)
class ByteRange:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"


def parse_range(header: Optional[str], size: int) -> ByteRange | None:
    """Parse a single ``bytes=`` range against a file of ``size`` bytes.

    Returns None when the header is absent, malformed or asks for several
    ranges; the caller then sends the whole file.

    Raises:
        RangeNotSatisfiable: The range starts past the end of the file or is inverted.
    """
    if not header:
        return None
    match = _RANGE_PATTERN.match(header.strip())
    if match is None:
        return None
    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        # Suffix form: the final N bytes.
        suffix = int(last)
        if suffix == 0 or size == 0:
            raise RangeNotSatisfiable(size)
        return ByteRange(start=max(size - suffix, 0), end=size - 1)

    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or start > end:
        raise RangeNotSatisfiable(size)
    return ByteRange(start=start, end=min(end, size - 1))


def compute_etag(modified_time: float, size: int) -> str:
    return f'"{int(modified_time * 1000)}-{size}"'


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    if not if_none_match:
        return False
    candidates = [value.strip() for value in if_none_match.split(",")]
    if "*" in candidates:
        return True
    weak_stripped = [value[2:] if value.startswith("W/") else value for value in candidates]
    return etag in weak_stripped


async def iter_file(path: Path, start: int, length: int, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield exactly ``length`` bytes of ``path`` starting at ``start``."""
    remaining = length
    async with aiofiles.open(path, "rb") as handle:
        await handle.seek(start)
        while remaining > 0:
            chunk = await handle.read(min(chunk_size, remaining))
            if not chunk:
                logger.warning("range_read_short", path=str(path), missing=remaining)
                break
            remaining -= len(chunk)
            yield chunk


def build_file_response(
    path: Path,
    *,
    media_type: str,
    range_header: Optional[str] = None,
    if_none_match: Optional[str] = None,
    cache_control: Optional[str] = None,
    stat: Optional[os.stat_result] = None,
) -> Response:
    try:
        stat = stat or path.stat()
    except FileNotFoundError as exc:
        raise NotFound("File not found") from exc

    size = stat.st_size
    etag = compute_etag(stat.st_mtime, size)
    headers = {"ETag": etag, "Accept-Ranges": "bytes"}
    if cache_control:
        headers["Cache-Control"] = cache_control

    if etag_matches(if_none_match, etag):
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)

    try:
        byte_range = parse_range(range_header, size)
    except RangeNotSatisfiable:
        logger.info("range_not_satisfiable", path=str(path), range=range_header, size=size)
        return Response(
            status_code=status.HTTP_416_RANGE_NOT_SATISFIABLE,
            headers={**headers, "Content-Range": f"bytes */{size}"},
        )

    if byte_range is None:
        headers["Content-Length"] = str(size)
        return StreamingResponse(
            iter_file(path, 0, size),
            status_code=status.HTTP_200_OK,
            media_type=media_type,
            headers=headers,
        )

    headers["Content-Length"] = str(byte_range.length)
    headers["Content-Range"] = byte_range.content_range(size)
    return StreamingResponse(
        iter_file(path, byte_range.start, byte_range.length),
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        media_type=media_type,
        headers=headers,
    )


__all__ = [
    "ByteRange",
    "CHUNK_SIZE",
    "build_file_response",
    "compute_etag",
    "etag_matches",
    "iter_file",
    "parse_range",
]
