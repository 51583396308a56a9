"""Tests for the metadata store and the filesystem blob store."""

import io
from unittest.mock import patch

import pytest

from database import create_db_manager
from models import Note, NoteType
from services.blob_store import FileSystemBlobStore
from services.errors import BlobCommitError, NoteExists, NotFound
from services.metadata_store import MetadataStore


@pytest.fixture
def store(tmp_path):
    db = create_db_manager(str(tmp_path / "notes.db"))
    yield MetadataStore(db)
    db.close_all_connections()


@pytest.fixture
def blobs(tmp_path):
    return FileSystemBlobStore(tmp_path / "blobs", suffix=".mp4")


def pending(note_id, token):
    return Note(id=note_id, name=note_id, type=NoteType.AUDIO, upload_complete=False, upload_token=token)


class TestMetadataStore:
    async def test_insert_and_get(self, store):
        inserted = await store.insert(Note(id="n1", name="First", type=NoteType.TEXT, content="hi"))

        fetched = await store.get("n1")
        assert fetched.name == "First"
        assert fetched.type is NoteType.TEXT
        assert fetched.created_at == inserted.created_at

    async def test_get_unknown_returns_none(self, store):
        assert await store.get("missing") is None

    async def test_duplicate_id_raises_note_exists(self, store):
        await store.insert(Note(id="dup", name="A", type=NoteType.TEXT, content="a"))

        with pytest.raises(NoteExists) as excinfo:
            await store.insert(Note(id="dup", name="B", type=NoteType.TEXT, content="b"))
        assert excinfo.value.status_code == 409

    async def test_list_preserves_insertion_order(self, store):
        for note_id in ("c", "a", "b"):
            await store.insert(Note(id=note_id, name=note_id, type=NoteType.TEXT, content=note_id))

        assert [note.id for note in await store.list_all()] == ["c", "a", "b"]

    async def test_list_incomplete_only_returns_unfinished_media(self, store):
        await store.insert(Note(id="text", name="t", type=NoteType.TEXT, content="x"))
        await store.insert(Note(id="done", name="d", type=NoteType.AUDIO, upload_complete=True))
        await store.insert(Note(id="pending", name="p", type=NoteType.VIDEO, upload_complete=False))

        assert [note.id for note in await store.list_incomplete()] == ["pending"]

    async def test_mark_upload_complete_is_one_way(self, store):
        await store.insert(pending("m", "attempt-1"))

        assert await store.mark_upload_complete("m", "attempt-1") is True
        assert (await store.get("m")).upload_complete is True
        assert await store.mark_upload_complete("m", "attempt-1") is False

    async def test_mark_upload_complete_after_delete(self, store):
        await store.insert(pending("m", "attempt-1"))
        await store.delete("m")

        assert await store.mark_upload_complete("m", "attempt-1") is False

    async def test_mark_upload_complete_ignores_other_attempts(self, store):
        await store.insert(pending("m", "attempt-2"))

        assert await store.mark_upload_complete("m", "attempt-1") is False
        assert (await store.get("m")).upload_complete is False

    async def test_delete_by_attempt_keeps_newer_record(self, store):
        await store.insert(pending("m", "attempt-2"))

        assert await store.delete("m", "attempt-1") == 0
        stored = await store.get("m")
        assert stored.upload_token == "attempt-2"
        assert stored.blob_key == "m.attempt-2"
        assert await store.delete("m", "attempt-2") == 1

    async def test_delete_reports_rowcount(self, store):
        await store.insert(Note(id="n", name="n", type=NoteType.TEXT, content="x"))

        assert await store.delete("n") == 1
        assert await store.delete("n") == 0

    def test_health_check(self, store):
        health = store.health_check()
        assert health["connection_test"] is True
        assert health["database_exists"] is True


class TestFileSystemBlobStore:
    async def test_put_then_get(self, blobs):
        written = await blobs.put_blob("b1", io.BytesIO(b"canonical bytes"))

        handle = await blobs.get_blob("b1")
        assert written == len(b"canonical bytes")
        assert handle.size == written
        with handle.open() as stream:
            assert stream.read() == b"canonical bytes"

    async def test_get_missing_raises_not_found(self, blobs):
        with pytest.raises(NotFound):
            await blobs.get_blob("nope")

    async def test_delete_missing_is_not_an_error(self, blobs):
        assert await blobs.delete_blob("nope") is False

    async def test_delete_existing(self, blobs):
        await blobs.put_blob("b2", io.BytesIO(b"x"))

        assert await blobs.delete_blob("b2") is True
        assert not await blobs.exists("b2")

    async def test_failed_commit_leaves_nothing_behind(self, blobs):
        with patch("services.blob_store.os.replace", side_effect=OSError("device gone")):
            with pytest.raises(BlobCommitError):
                await blobs.put_blob("b3", io.BytesIO(b"data"))

        assert not await blobs.exists("b3")
        assert list(blobs.root.iterdir()) == []

    def test_purge_partials(self, blobs):
        (blobs.root / "stale.mp4.part").write_bytes(b"half")
        (blobs.root / "kept.mp4").write_bytes(b"whole")

        assert blobs.purge_partials() == 1
        assert [path.name for path in blobs.root.iterdir()] == ["kept.mp4"]
