from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any
from enum import Enum


MEDIA_PLACEHOLDER = "media"


def attempt_key(note_id: str, upload_token: Optional[str] = None) -> str:
    """Name for files owned by one upload attempt of a note."""
    return f"{note_id}.{upload_token}" if upload_token else note_id


class NoteType(str, Enum):
    TEXT = "text"
    AUDIO = "audio"
    VIDEO = "video"

    @property
    def is_media(self) -> bool:
        return self is not NoteType.TEXT


class UploadOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"

    @property
    def event_name(self) -> str:
        """SSE event name understood by existing clients."""
        return "uploadsuccess" if self is UploadOutcome.SUCCESS else "uploaderror"


class NoteInput(BaseModel):
    """Fields a client submits when adding a note."""
    id: str = Field(min_length=1, max_length=128)
    name: str
    type: NoteType
    content: Optional[str] = None

    @field_validator("id")
    @classmethod
    def id_is_path_safe(cls, value: str) -> str:
        # The id names blob and temp files, so it must not escape a directory
        if "/" in value or "\\" in value or value in {".", ".."} or "\x00" in value:
            raise ValueError("id must not contain path separators")
        return value


class Note(BaseModel):
    id: str
    name: str
    type: NoteType
    content: Optional[str] = None
    # None for text notes: they are complete at creation
    upload_complete: Optional[bool] = None
    created_at: Optional[str] = None
    # Identifies the upload attempt that owns the blob and temp files
    upload_token: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.upload_complete is not False

    @property
    def blob_key(self) -> str:
        return attempt_key(self.id, self.upload_token)

    def to_api(self) -> Dict[str, Any]:
        """Client representation; media notes carry a content placeholder."""
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "content": self.content,
        }
        if self.type.is_media:
            if not self.content:
                data["content"] = MEDIA_PLACEHOLDER
            data["uploadComplete"] = bool(self.upload_complete)
        if self.created_at:
            data["createdAt"] = self.created_at
        return data


class IngestAck(BaseModel):
    id: str
    complete: bool


class UploadEvent(BaseModel):
    id: str
    outcome: UploadOutcome
    note_name: str
    detail: Optional[str] = None

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "outcome": self.outcome.value,
            "note": self.note_name,
            "detail": self.detail,
        }
