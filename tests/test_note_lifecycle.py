"""Tests for note deletion and startup recovery."""

import io

import pytest

from models import Note, NoteInput, NoteType
from services.errors import MissingBlob, NotFound


async def add_complete_media(container, note_id, data=b"bytes"):
    await container.coordinator.ingest(
        NoteInput(id=note_id, name=note_id, type=NoteType.VIDEO), io.BytesIO(data)
    )
    assert await container.supervisor.wait_idle(timeout=5)


class TestDeleteNote:
    async def test_delete_text_note(self, container):
        await container.coordinator.ingest(
            NoteInput(id="t", name="t", type=NoteType.TEXT, content="x")
        )

        assert await container.notes.delete("t") == "t"
        assert await container.store.get("t") is None

    async def test_delete_media_note_removes_blob(self, container):
        await add_complete_media(container, "m")
        blob_key = (await container.store.get("m")).blob_key

        await container.notes.delete("m")

        assert await container.store.get("m") is None
        assert not await container.blobs.exists(blob_key)

    async def test_unknown_id_raises_not_found(self, container):
        with pytest.raises(NotFound):
            await container.notes.delete("ghost")

    async def test_missing_blob_blocks_user_delete(self, container):
        await container.store.insert(Note(id="orphan", name="o", type=NoteType.AUDIO, upload_complete=True))

        with pytest.raises(MissingBlob):
            await container.notes.delete("orphan")

        assert await container.store.get("orphan") is not None

    async def test_missing_blob_tolerated_for_system_delete(self, container):
        await container.store.insert(Note(id="orphan", name="o", type=NoteType.AUDIO, upload_complete=False))

        assert await container.notes.delete("orphan", system=True) == "orphan"
        assert await container.store.get("orphan") is None

    async def test_list_notes_renders_media_placeholder(self, container):
        await container.coordinator.ingest(
            NoteInput(id="t", name="Text", type=NoteType.TEXT, content="words")
        )
        await add_complete_media(container, "v")

        listed = await container.notes.list_notes()

        assert [note["id"] for note in listed] == ["t", "v"]
        assert listed[0]["content"] == "words"
        assert "uploadComplete" not in listed[0]
        assert listed[1]["content"] == "media"
        assert listed[1]["uploadComplete"] is True


class TestRecoveryScanner:
    async def test_purges_incomplete_notes(self, container, settings):
        for note_id in ("p1", "p2", "p3"):
            await container.store.insert(
                Note(id=note_id, name=note_id, type=NoteType.AUDIO, upload_complete=False)
            )
        await add_complete_media(container, "done")
        (settings.work_dir / "p1.upload").write_bytes(b"staged")
        (settings.work_dir / "p2-converted.mp4").write_bytes(b"converted")
        (settings.blob_dir / "p3.mp4.part").write_bytes(b"partial")

        report = await container.recovery.run()

        assert sorted(report.purged) == ["p1", "p2", "p3"]
        assert report.failed == {}
        assert report.temp_files_removed == 2
        assert report.partial_blobs_removed == 1
        assert [note.id for note in await container.store.list_all()] == ["done"]
        done = await container.store.get("done")
        assert await container.blobs.exists(done.blob_key)
        assert list(settings.work_dir.iterdir()) == []

    async def test_second_run_is_a_no_op(self, container):
        await container.store.insert(Note(id="p", name="p", type=NoteType.VIDEO, upload_complete=False))

        first = await container.recovery.run()
        second = await container.recovery.run()

        assert first.purged == ["p"]
        assert second.to_dict() == {
            "purged": [],
            "failed": {},
            "temp_files_removed": 0,
            "partial_blobs_removed": 0,
        }

    async def test_incomplete_note_with_blob_loses_both(self, container, settings):
        await container.store.insert(Note(id="half", name="h", type=NoteType.AUDIO, upload_complete=False))
        await container.blobs.put_blob("half", io.BytesIO(b"bytes"))

        report = await container.recovery.run()

        assert report.purged == ["half"]
        assert not await container.blobs.exists("half")
