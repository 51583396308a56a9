"""Filesystem blob store for canonical media bytes.

Blobs are written to ``<key><suffix>.<nonce>.part`` and renamed into place only after
the stream has been fully written and flushed, so a reader can never open a
partially written blob under its final name.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from services.errors import BlobCommitError, NotFound

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
PARTIAL_SUFFIX = ".part"


@dataclass(frozen=True)
class BlobHandle:
    """A committed blob: where it lives and how large it is."""
    note_id: str
    path: Path
    size: int

    def open(self) -> BinaryIO:
        return open(self.path, "rb")


@runtime_checkable
class BlobStore(Protocol):
    """Durable binary storage keyed by a note's blob key."""

    async def put_blob(self, note_id: str, stream: BinaryIO) -> int:
        """Write the stream under note_id, all-or-nothing. Returns bytes written."""
        ...

    async def get_blob(self, note_id: str) -> BlobHandle:
        ...

    async def delete_blob(self, note_id: str) -> bool:
        """Remove the blob; False (not an error) when none exists."""
        ...

    async def exists(self, note_id: str) -> bool:
        ...


class FileSystemBlobStore:
    """BlobStore backed by a single directory."""

    def __init__(self, root: Path, suffix: str = ".mp4") -> None:
        self.root = Path(root)
        self.suffix = suffix
        self.root.mkdir(parents=True, exist_ok=True)

    def _final_path(self, note_id: str) -> Path:
        return self.root / f"{note_id}{self.suffix}"

    def _partial_path(self, note_id: str) -> Path:
        # Unique per write so two writers never share a partial file
        return self.root / f"{note_id}{self.suffix}.{uuid.uuid4().hex}{PARTIAL_SUFFIX}"

    def _put(self, note_id: str, stream: BinaryIO) -> int:
        final_path = self._final_path(note_id)
        partial_path = self._partial_path(note_id)
        written = 0
        try:
            with open(partial_path, "wb") as out:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    out.write(chunk)
                    written += len(chunk)
                out.flush()
                os.fsync(out.fileno())
            os.replace(partial_path, final_path)
        except OSError as e:
            try:
                partial_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning(f"Partial blob {partial_path} was not deleted: {cleanup_error}")
            raise BlobCommitError(f"Failed to store blob {note_id}: {e}", note_id=note_id) from e
        logger.info(f"Added {note_id} to blob store ({written} bytes)")
        return written

    def _get(self, note_id: str) -> BlobHandle:
        path = self._final_path(note_id)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            raise NotFound(f"No media stored for note {note_id}", note_id=note_id)
        return BlobHandle(note_id=note_id, path=path, size=size)

    def _delete(self, note_id: str) -> bool:
        path = self._final_path(note_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Deleted blob {note_id}")
        return True

    async def put_blob(self, note_id: str, stream: BinaryIO) -> int:
        return await asyncio.to_thread(self._put, note_id, stream)

    async def get_blob(self, note_id: str) -> BlobHandle:
        return await asyncio.to_thread(self._get, note_id)

    async def delete_blob(self, note_id: str) -> bool:
        return await asyncio.to_thread(self._delete, note_id)

    async def exists(self, note_id: str) -> bool:
        return await asyncio.to_thread(self._final_path(note_id).is_file)

    def purge_partials(self) -> int:
        """Remove stale partial writes left by an interrupted process."""
        removed = 0
        for path in self.root.glob(f"*{PARTIAL_SUFFIX}"):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Stale partial blob {path} was not deleted: {e}")
        return removed
