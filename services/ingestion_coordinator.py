"""
Ingestion coordinator

Accepts new notes and drives media notes through their two phases:

1. Provisional (before the caller is answered): the record is written with
   ``upload_complete = False`` and the upload is staged on disk.
2. Completion (detached, after the answer): transcode, commit the canonical
   bytes to the blob store, flip ``upload_complete`` and publish the outcome.

The blob is always committed before the flag is flipped, so a reader never
sees ``upload_complete = True`` without a blob. Any failure in the completion
phase removes the provisional record and whatever blob was written, and is
reported only through the notification bus. Temporary artifacts are removed
on every path.

Each media upload is an attempt with its own token. Temporary files, the
blob and the background task are named by the attempt, and the flag flip and
failure cleanup only match the record of that attempt. A note id that is
deleted and reused while an older attempt is still running is therefore
never finalized or removed by the older attempt.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import BinaryIO, Optional

from error_monitoring import ErrorMonitor
from media_utils import remove_temp_file, staged_upload_path
from models import IngestAck, Note, NoteInput, attempt_key, NoteType, UploadEvent, UploadOutcome
from services.blob_store import BlobStore
from services.errors import InvalidInput, NotesError, StoreError
from services.metadata_store import MetadataStore
from services.notification_bus import NotificationBus
from services.transcoder import Transcoder
from tasks import TaskSupervisor

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


class IngestionCoordinator:
    """Orchestrates metadata, transcoding, blob commit and notification for one note."""

    def __init__(
        self,
        store: MetadataStore,
        blobs: BlobStore,
        transcoder: Transcoder,
        bus: NotificationBus,
        supervisor: TaskSupervisor,
        work_dir: Path,
        error_monitor: Optional[ErrorMonitor] = None,
        concurrency: int = 2,
        max_upload_size: Optional[int] = None,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.transcoder = transcoder
        self.bus = bus
        self.supervisor = supervisor
        self.work_dir = Path(work_dir)
        self.error_monitor = error_monitor or ErrorMonitor()
        self.max_upload_size = max_upload_size
        self._slots = asyncio.Semaphore(concurrency)
        self.work_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def ingest(self, note: NoteInput, media: Optional[BinaryIO] = None) -> IngestAck:
        """Store a note. Media notes are acknowledged before they are transcoded."""
        if media is None:
            return await self._ingest_text(note)
        return await self._ingest_media(note, media)

    # ------------------------------------------------------------------
    # Text path
    # ------------------------------------------------------------------
    async def _ingest_text(self, note: NoteInput) -> IngestAck:
        if note.type is not NoteType.TEXT:
            raise InvalidInput(
                f"Note type is '{note.type.value}', but there is no file", note_id=note.id
            )
        if note.content is None:
            raise InvalidInput("A text note requires content", note_id=note.id)

        await self.store.insert(
            Note(id=note.id, name=note.name, type=note.type, content=note.content)
        )
        logger.info(f"Added text note {note.id}")
        return IngestAck(id=note.id, complete=True)

    # ------------------------------------------------------------------
    # Media path, provisional phase
    # ------------------------------------------------------------------
    def _declared_size(self, media: BinaryIO) -> Optional[int]:
        try:
            position = media.tell()
            size = media.seek(0, os.SEEK_END) - position
            media.seek(position)
            return size
        except (AttributeError, OSError, ValueError):
            return None

    def _check_upload(self, note_id: str, media: BinaryIO) -> None:
        size = self._declared_size(media)
        if size is None:
            return
        if size == 0:
            raise InvalidInput("The uploaded file is empty", note_id=note_id)
        if self.max_upload_size is not None and size > self.max_upload_size:
            raise InvalidInput(
                f"The uploaded file exceeds {self.max_upload_size} bytes", note_id=note_id
            )

    def _stage_upload(self, note_id: str, key: str, media: BinaryIO) -> Path:
        path = staged_upload_path(self.work_dir, key)
        written = 0
        try:
            with open(path, "wb") as out:
                while True:
                    chunk = media.read(COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if self.max_upload_size is not None and written > self.max_upload_size:
                        raise InvalidInput(
                            f"The uploaded file exceeds {self.max_upload_size} bytes",
                            note_id=note_id,
                        )
                    out.write(chunk)
        except BaseException:
            remove_temp_file(path)
            raise
        if written == 0:
            remove_temp_file(path)
            raise InvalidInput("The uploaded file is empty", note_id=note_id)
        return path

    async def _ingest_media(self, note: NoteInput, media: BinaryIO) -> IngestAck:
        if not note.type.is_media:
            raise InvalidInput("A text note must not carry a file", note_id=note.id)
        self._check_upload(note.id, media)

        token = uuid.uuid4().hex
        await self.store.insert(
            Note(
                id=note.id,
                name=note.name,
                type=note.type,
                upload_complete=False,
                upload_token=token,
            )
        )
        key = attempt_key(note.id, token)

        try:
            staged = await asyncio.to_thread(self._stage_upload, note.id, key, media)
        except (InvalidInput, OSError) as e:
            # Nothing was scheduled, so the provisional record must not linger
            await self._delete_record_quietly(note.id, token)
            if isinstance(e, OSError):
                raise StoreError(f"Failed to stage upload: {e}", note_id=note.id) from e
            raise

        self.supervisor.spawn(key, self._complete(note, token, staged))
        logger.info(f"Accepted media note {note.id}, transcoding in background")
        return IngestAck(id=note.id, complete=False)

    # ------------------------------------------------------------------
    # Media path, completion phase
    # ------------------------------------------------------------------
    async def _commit_blob(self, key: str, converted: Path) -> None:
        with open(converted, "rb") as stream:
            await self.blobs.put_blob(key, stream)

    async def _complete(self, note: NoteInput, token: str, staged: Path) -> None:
        key = attempt_key(note.id, token)
        converted: Optional[Path] = None
        try:
            async with self._slots:
                converted = await self.transcoder.transcode(key, staged)
            await self._commit_blob(key, converted)
            if not await self.store.mark_upload_complete(note.id, token):
                raise StoreError(
                    f"Note {note.id} was removed before its upload completed", note_id=note.id
                )
        except NotesError as e:
            await self._fail(note, token, e)
        except Exception as e:
            logger.exception(f"Unexpected failure while completing note {note.id}")
            await self._fail(note, token, e)
        else:
            logger.info(f"Media note {note.id} upload complete")
            self.bus.publish(
                UploadEvent(id=note.id, outcome=UploadOutcome.SUCCESS, note_name=note.name)
            )
        finally:
            remove_temp_file(staged)
            remove_temp_file(converted)

    async def _fail(self, note: NoteInput, token: str, error: Exception) -> None:
        context = {"note_type": note.type.value}
        if isinstance(error, NotesError):
            context.update(error.to_dict())
        self.error_monitor.capture_error(error, "ingestion", note_id=note.id, context=context)
        try:
            await self.blobs.delete_blob(attempt_key(note.id, token))
        except Exception as e:
            logger.warning(f"Blob cleanup for note {note.id} failed: {e}")
        await self._delete_record_quietly(note.id, token)
        message = getattr(error, "message", None) or str(error)
        self.bus.publish(
            UploadEvent(
                id=note.id, outcome=UploadOutcome.ERROR, note_name=note.name, detail=message
            )
        )

    async def _delete_record_quietly(self, note_id: str, token: str) -> None:
        # Leftovers are purged by the recovery scan on the next start
        try:
            await self.store.delete(note_id, token)
        except StoreError as e:
            logger.error(f"Provisional note {note_id} could not be removed: {e}")
