"""Note listing and deletion shared by the HTTP layer and the recovery scan."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from services.blob_store import BlobStore
from services.errors import DeleteError, MissingBlob, NotFound
from services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)


class NoteService:
    def __init__(self, store: MetadataStore, blobs: BlobStore) -> None:
        self.store = store
        self.blobs = blobs

    async def list_notes(self) -> List[Dict[str, Any]]:
        """All notes in creation order, rendered for clients."""
        return [note.to_api() for note in await self.store.list_all()]

    async def delete(self, note_id: str, system: bool = False) -> str:
        """
        Delete a note and, for media notes, its blob.

        The blob goes first. A user delete of a media note whose blob is
        missing fails with MissingBlob and keeps the record, so the pointer
        to a blob that might still turn up is not lost. System deletes
        (recovery, operator tasks) treat a missing blob as expected.

        An operator deleting a note that is still being transcoded gets
        MissingBlob for the same reason; retry once the upload settles.
        """
        note = await self.store.get(note_id)
        if note is None:
            raise NotFound(f"A note {note_id} is not found", note_id=note_id)

        if note.type.is_media:
            removed = await self.blobs.delete_blob(note.blob_key)
            if not removed and not system:
                raise MissingBlob(
                    f"A note {note_id} is found, but there is no expected file", note_id=note_id
                )

        deleted = await self.store.delete(note_id, note.upload_token)
        if deleted != 1:
            raise DeleteError(f"Failed to delete an existing {note_id} note", note_id=note_id)

        logger.info(f"Deleted note {note_id}{' (system)' if system else ''}")
        return note_id
