"""Byte-range serving of committed blobs (RFC 7233 single ranges)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

from fastapi.responses import Response, StreamingResponse

from services.blob_store import BlobHandle

BYTES_PREFIX = "bytes="
STREAM_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int  # inclusive

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"


class RangeNotSatisfiable(Exception):
    def __init__(self, size: int):
        super().__init__(f"Requested range not satisfiable for {size} bytes")
        self.size = size


def parse_range_header(header: Optional[str], size: int) -> Optional[ByteRange]:
    """
    Resolve a Range header against a resource of ``size`` bytes.

    Returns None when the whole resource should be served: no header, a unit
    other than bytes, malformed syntax, or several ranges at once. Raises
    RangeNotSatisfiable when the range lies entirely outside the resource.
    """
    if not header:
        return None
    header = header.strip()
    if not header.startswith(BYTES_PREFIX):
        return None
    ranges = header[len(BYTES_PREFIX):].strip()
    if "," in ranges or "-" not in ranges:
        return None

    first, last = (part.strip() for part in ranges.split("-", 1))
    try:
        if first:
            start = int(first)
            end = int(last) if last else None
            if start < 0 or (end is not None and end < start):
                return None
            if end is None:
                # Open-ended: through the last byte
                end = max(size - 1, start)
        elif last:
            # Suffix range: the final N bytes
            suffix = int(last)
            if suffix <= 0:
                raise RangeNotSatisfiable(size)
            start = max(size - suffix, 0)
            end = size - 1
        else:
            return None
    except ValueError:
        return None

    if start >= size:
        raise RangeNotSatisfiable(size)
    return ByteRange(start=start, end=min(end, size - 1))


def iter_blob(handle: BlobHandle, start: int, length: int) -> Iterator[bytes]:
    remaining = length
    with handle.open() as stream:
        stream.seek(start)
        while remaining > 0:
            chunk = stream.read(min(STREAM_CHUNK_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


def build_blob_response(
    handle: BlobHandle,
    range_header: Optional[str],
    method: str,
    media_type: str,
) -> Response:
    """200/206/416 response for a blob; HEAD answers with headers only."""
    size = handle.size

    if method == "HEAD":
        return Response(
            status_code=200,
            media_type=media_type,
            headers={"accept-ranges": "bytes", "content-length": str(size)},
        )

    try:
        byte_range = parse_range_header(range_header, size)
    except RangeNotSatisfiable:
        return Response(
            status_code=416,
            headers={"accept-ranges": "bytes", "content-range": f"bytes */{size}"},
        )

    if byte_range is None:
        return StreamingResponse(
            iter_blob(handle, 0, size),
            status_code=200,
            media_type=media_type,
            headers={"accept-ranges": "bytes", "content-length": str(size)},
        )

    return StreamingResponse(
        iter_blob(handle, byte_range.start, byte_range.length),
        status_code=206,
        media_type=media_type,
        headers={
            "accept-ranges": "bytes",
            "content-length": str(byte_range.length),
            "content-range": byte_range.content_range(size),
        },
    )
