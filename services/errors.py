"""
Error taxonomy for note ingestion and deletion.

Errors raised before the HTTP acknowledgement carry an HTTP status and a
machine-readable code so the API layer can render them directly. Errors in the
completion phase (TranscodeError, BlobCommitError) never reach an HTTP
response; they are reported through the notification bus.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Categories of errors for appropriate handling strategies."""
    VALIDATION = "validation"         # Input validation errors
    NOT_FOUND = "not_found"           # Unknown note id
    CONFLICT = "conflict"             # State does not allow the operation
    STORAGE = "storage"               # Database/filesystem errors
    PROCESSING = "processing"         # Media conversion errors


class NotesError(Exception):
    """Base class for all expected failures in the notes backend."""

    code = "NOTES_ERROR"
    category = ErrorCategory.STORAGE
    status_code = 500

    def __init__(self, message: str, note_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.note_id = note_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            "note_id": self.note_id,
        }


class InvalidInput(NotesError):
    code = "INVALID_INPUT"
    category = ErrorCategory.VALIDATION
    status_code = 400


class NotFound(NotesError):
    code = "NOT_FOUND"
    category = ErrorCategory.NOT_FOUND
    status_code = 404


class StoreError(NotesError):
    code = "STORE_ERROR"
    category = ErrorCategory.STORAGE
    status_code = 500


class NoteExists(StoreError):
    code = "NOTE_EXISTS"
    category = ErrorCategory.CONFLICT
    status_code = 409


class MissingBlob(NotesError):
    code = "MISSING_BLOB"
    category = ErrorCategory.CONFLICT
    status_code = 409


class DeleteError(NotesError):
    code = "DELETE_ERROR"
    category = ErrorCategory.STORAGE
    status_code = 500


class TranscodeError(NotesError):
    code = "TRANSCODE_ERROR"
    category = ErrorCategory.PROCESSING
    status_code = 422


class BlobCommitError(NotesError):
    code = "BLOB_COMMIT_ERROR"
    category = ErrorCategory.STORAGE
    status_code = 500


__all__ = [
    "ErrorCategory",
    "NotesError",
    "InvalidInput",
    "NotFound",
    "StoreError",
    "NoteExists",
    "MissingBlob",
    "DeleteError",
    "TranscodeError",
    "BlobCommitError",
]
