"""
Startup recovery for interrupted media uploads.

A media note left with ``upload_complete = False`` by a previous process can
never finish: its staged upload and transcoder belonged to that process. The
scan purges every such note through the normal delete path (with missing blobs
tolerated) and sweeps temporary artifacts that process left behind. Running it
again is harmless: already purged notes are simply no longer listed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from media_utils import remove_temp_file
from services.blob_store import FileSystemBlobStore
from services.errors import NotesError, NotFound
from services.metadata_store import MetadataStore
from services.note_service import NoteService

logger = logging.getLogger(__name__)

TEMP_PATTERNS = ("*.upload", "*-converted.*")


@dataclass
class RecoveryReport:
    purged: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    temp_files_removed: int = 0
    partial_blobs_removed: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "purged": self.purged,
            "failed": self.failed,
            "temp_files_removed": self.temp_files_removed,
            "partial_blobs_removed": self.partial_blobs_removed,
        }


class RecoveryScanner:
    def __init__(
        self,
        store: MetadataStore,
        notes: NoteService,
        work_dir: Optional[Path] = None,
        blobs: Optional[FileSystemBlobStore] = None,
    ) -> None:
        self.store = store
        self.notes = notes
        self.work_dir = Path(work_dir) if work_dir else None
        self.blobs = blobs

    async def run(self) -> RecoveryReport:
        """Purge incomplete notes. Must run before ingestion traffic is accepted."""
        report = RecoveryReport()

        incomplete = await self.store.list_incomplete()
        if incomplete:
            logger.info(f"Recovering {len(incomplete)} incomplete note(s)")

        for note in incomplete:
            try:
                await self.notes.delete(note.id, system=True)
            except NotFound:
                # Removed concurrently or by an earlier interrupted scan
                continue
            except NotesError as e:
                logger.error(f"Could not purge incomplete note {note.id}: {e}")
                report.failed[note.id] = e.message
                continue
            report.purged.append(note.id)

        report.temp_files_removed = self._sweep_work_dir()
        if self.blobs is not None:
            report.partial_blobs_removed = self.blobs.purge_partials()

        logger.info(
            f"Recovery finished: purged={len(report.purged)} failed={len(report.failed)} "
            f"temp_files={report.temp_files_removed} partial_blobs={report.partial_blobs_removed}"
        )
        return report

    def _sweep_work_dir(self) -> int:
        if self.work_dir is None or not self.work_dir.is_dir():
            return 0
        removed = 0
        for pattern in TEMP_PATTERNS:
            for path in self.work_dir.glob(pattern):
                if path.is_file() and remove_temp_file(path):
                    removed += 1
        return removed
