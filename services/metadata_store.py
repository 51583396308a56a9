"""SQLite-backed store of note metadata records.

Each public coroutine runs its query on a worker thread so the event loop is
never blocked by SQLite; every statement touches a single row, which is the
only isolation the ingestion pipeline relies on.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from database import DatabaseManager
from models import Note, NoteType
from services.errors import NoteExists, StoreError

logger = logging.getLogger(__name__)


def _row_to_note(row: sqlite3.Row) -> Note:
    upload_complete = row["upload_complete"]
    return Note(
        id=row["id"],
        name=row["name"],
        type=NoteType(row["type"]),
        content=row["content"],
        upload_complete=None if upload_complete is None else bool(upload_complete),
        created_at=row["created_at"],
        upload_token=row["upload_token"],
    )


class MetadataStore:
    """Durable note records keyed by caller-supplied id."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Sync implementations (run in worker threads)
    # ------------------------------------------------------------------
    def _insert(self, note: Note) -> Note:
        created_at = note.created_at or datetime.now(timezone.utc).isoformat()
        upload_complete = None if note.upload_complete is None else int(note.upload_complete)
        try:
            with self.db.get_db_context() as conn:
                conn.execute(
                    "INSERT INTO notes (id, name, type, content, upload_complete, upload_token, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        note.id,
                        note.name,
                        note.type.value,
                        note.content,
                        upload_complete,
                        note.upload_token,
                        created_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise NoteExists(f"A note {note.id} already exists", note_id=note.id) from e
        except sqlite3.Error as e:
            raise StoreError(f"Failed to insert note {note.id}: {e}", note_id=note.id) from e
        return note.model_copy(update={"created_at": created_at})

    def _get(self, note_id: str) -> Optional[Note]:
        try:
            with self.db.get_db_context() as conn:
                row = conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read note {note_id}: {e}", note_id=note_id) from e
        return _row_to_note(row) if row else None

    def _list(self, incomplete_only: bool) -> List[Note]:
        query = "SELECT * FROM notes"
        if incomplete_only:
            query += " WHERE upload_complete = 0"
        query += " ORDER BY created_at, rowid"
        try:
            with self.db.get_db_context() as conn:
                rows = conn.execute(query).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list notes: {e}") from e
        return [_row_to_note(row) for row in rows]

    def _mark_upload_complete(self, note_id: str, upload_token: str) -> int:
        try:
            with self.db.get_db_context() as conn:
                cursor = conn.execute(
                    "UPDATE notes SET upload_complete = 1 "
                    "WHERE id = ? AND upload_token = ? AND upload_complete = 0",
                    (note_id, upload_token),
                )
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Failed to finalize note {note_id}: {e}", note_id=note_id) from e

    def _delete(self, note_id: str, upload_token: Optional[str]) -> int:
        query = "DELETE FROM notes WHERE id = ?"
        params: tuple = (note_id,)
        if upload_token is not None:
            query += " AND upload_token = ?"
            params = (note_id, upload_token)
        try:
            with self.db.get_db_context() as conn:
                cursor = conn.execute(query, params)
                return cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete note {note_id}: {e}", note_id=note_id) from e

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def insert(self, note: Note) -> Note:
        """Insert a new record. Raises NoteExists for a duplicate id."""
        return await asyncio.to_thread(self._insert, note)

    async def get(self, note_id: str) -> Optional[Note]:
        return await asyncio.to_thread(self._get, note_id)

    async def list_all(self) -> List[Note]:
        return await asyncio.to_thread(self._list, False)

    async def list_incomplete(self) -> List[Note]:
        """Media notes whose upload never finished."""
        return await asyncio.to_thread(self._list, True)

    async def mark_upload_complete(self, note_id: str, upload_token: str) -> bool:
        """
        Flip uploadComplete to true for one upload attempt.

        False when no provisional record of that attempt exists: the note was
        deleted, or replaced by a newer note with the same id.
        """
        updated = await asyncio.to_thread(self._mark_upload_complete, note_id, upload_token)
        return updated == 1

    async def delete(self, note_id: str, upload_token: Optional[str] = None) -> int:
        """Delete a record and return how many rows were removed.

        With ``upload_token`` only the record of that upload attempt matches.
        """
        return await asyncio.to_thread(self._delete, note_id, upload_token)

    def health_check(self):
        return self.db.health_check()
