"""
Notes Router for Chest of Notes API.

Endpoints under ``{ROUTE_PREFIX}/mongo``:
- POST   /add/             create a text note, or a media note from a file part
- GET    /fetch/all/       list every note
- GET    /fetch/{id}/      stream a media note's blob, honouring Range
- HEAD   /fetch/{id}/      blob headers only
- GET    /delete/{id}/     delete a note (legacy verb)
- DELETE /{id}/            delete a note

Failures are rendered as ``{"status": "Error: not <verb>", "data": message}``
with the status code carried by the error.
"""

from __future__ import annotations

import logging
from typing import Any, BinaryIO, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from models import NoteInput
from services.container import NotesContainer, get_container
from services.errors import InvalidInput, NotesError, NotFound
from services.range_server import build_blob_response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notes"])

NOTE_FIELDS = ("id", "name", "type")


def error_response(error: NotesError, action: str) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"status": f"Error: not {action}", "data": error.message, "code": error.code},
    )


def _validation_message(error: ValidationError) -> str:
    details = []
    for item in error.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or "body"
        details.append(f"{field}: {item.get('msg')}")
    return "; ".join(details)


async def _read_submission(request: Request, max_size: int) -> Dict[str, Any]:
    """Collect note fields from a multipart/urlencoded form or a JSON body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise InvalidInput("Request body is not valid JSON")
        if not isinstance(body, dict):
            raise InvalidInput("Request body must be a JSON object")
        return body

    form = await request.form(max_part_size=max_size)
    return {key: form.get(key) for key in form.keys()}


def parse_submission(fields: Dict[str, Any]) -> Tuple[NoteInput, Optional[UploadFile]]:
    upload: Optional[UploadFile] = None
    content = fields.get("content")
    if isinstance(content, UploadFile):
        upload = content
        content = None

    missing = [name for name in NOTE_FIELDS if not fields.get(name)]
    if missing:
        raise InvalidInput(f"Missing required field(s): {', '.join(missing)}")

    try:
        note = NoteInput(
            id=fields["id"],
            name=fields["name"],
            type=fields["type"],
            content=content,
        )
    except ValidationError as e:
        raise InvalidInput(_validation_message(e), note_id=str(fields.get("id")))
    return note, upload


@router.post("/add/")
async def add_note(request: Request, container: NotesContainer = Depends(get_container)):
    upload: Optional[UploadFile] = None
    try:
        fields = await _read_submission(request, container.settings.max_upload_size)
        note, upload = parse_submission(fields)
        media: Optional[BinaryIO] = upload.file if upload is not None else None
        ack = await container.coordinator.ingest(note, media)
    except NotesError as e:
        logger.info(f"Note was not added: {e.message}")
        return error_response(e, "added")
    finally:
        if upload is not None:
            await upload.close()

    payload: Dict[str, Any] = {"status": "Added", "data": ack.id}
    if not ack.complete:
        payload["uploadComplete"] = False
    return payload


@router.get("/fetch/all/")
async def fetch_all(container: NotesContainer = Depends(get_container)):
    try:
        notes = await container.notes.list_notes()
    except NotesError as e:
        return error_response(e, "fetched")
    return {"status": "Fetched", "data": notes}


@router.api_route("/fetch/{note_id}/", methods=["GET", "HEAD"])
async def fetch_blob(
    note_id: str,
    request: Request,
    container: NotesContainer = Depends(get_container),
) -> Response:
    try:
        note = await container.store.get(note_id)
        if note is None:
            raise NotFound(f"A note {note_id} is not found", note_id=note_id)
        if not note.type.is_media:
            raise NotFound(f"A note {note_id} has no media", note_id=note_id)
        if not note.is_complete:
            raise NotFound(f"A note {note_id} is still being processed", note_id=note_id)
        handle = await container.blobs.get_blob(note.blob_key)
    except NotesError as e:
        return error_response(e, "fetched")

    return build_blob_response(
        handle,
        request.headers.get("range"),
        request.method,
        container.settings.canonical_media_type,
    )


async def _delete(note_id: str, request: Request, container: NotesContainer):
    system = bool(request.headers.get(container.settings.system_delete_header))
    try:
        deleted = await container.notes.delete(note_id, system=system)
    except NotesError as e:
        return error_response(e, "deleted")
    return {"status": "Deleted", "data": deleted}


@router.get("/delete/{note_id}/")
async def delete_note_legacy(
    note_id: str,
    request: Request,
    container: NotesContainer = Depends(get_container),
):
    return await _delete(note_id, request, container)


@router.delete("/{note_id}/")
async def delete_note(
    note_id: str,
    request: Request,
    container: NotesContainer = Depends(get_container),
):
    return await _delete(note_id, request, container)
