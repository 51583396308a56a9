"""Construction of the long-lived collaborators shared by every request."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from starlette.requests import HTTPConnection

from config import Settings
from database import DatabaseManager, create_db_manager
from error_monitoring import ErrorMonitor
from services.blob_store import FileSystemBlobStore
from services.ingestion_coordinator import IngestionCoordinator
from services.metadata_store import MetadataStore
from services.note_service import NoteService
from services.notification_bus import NotificationBus
from services.recovery_scanner import RecoveryScanner
from services.transcoder import FFmpegTranscoder, Transcoder
from tasks import TaskSupervisor


@dataclass
class NotesContainer:
    settings: Settings
    db: DatabaseManager
    store: MetadataStore
    blobs: FileSystemBlobStore
    transcoder: Transcoder
    bus: NotificationBus
    supervisor: TaskSupervisor
    error_monitor: ErrorMonitor
    coordinator: IngestionCoordinator
    notes: NoteService
    recovery: RecoveryScanner

    def close(self) -> None:
        self.db.close_all_connections()


def build_container(settings: Settings, transcoder: Optional[Transcoder] = None) -> NotesContainer:
    """Wire every component once; request handlers receive them through Depends."""
    db = create_db_manager(str(settings.db_path))
    store = MetadataStore(db)
    blobs = FileSystemBlobStore(settings.blob_dir, suffix=settings.canonical_suffix)
    if transcoder is None:
        transcoder = FFmpegTranscoder(
            work_dir=settings.work_dir,
            ffmpeg_path=settings.ffmpeg_path,
            output_args=settings.ffmpeg_output_args_list,
            suffix=settings.canonical_suffix,
            timeout_seconds=settings.transcode_timeout_seconds,
        )
    bus = NotificationBus(max_queue=settings.subscriber_queue_size)
    supervisor = TaskSupervisor()
    error_monitor = ErrorMonitor()
    coordinator = IngestionCoordinator(
        store=store,
        blobs=blobs,
        transcoder=transcoder,
        bus=bus,
        supervisor=supervisor,
        work_dir=settings.work_dir,
        error_monitor=error_monitor,
        concurrency=settings.transcode_concurrency,
        max_upload_size=settings.max_upload_size,
    )
    notes = NoteService(store, blobs)
    recovery = RecoveryScanner(store, notes, work_dir=settings.work_dir, blobs=blobs)
    return NotesContainer(
        settings=settings,
        db=db,
        store=store,
        blobs=blobs,
        transcoder=transcoder,
        bus=bus,
        supervisor=supervisor,
        error_monitor=error_monitor,
        coordinator=coordinator,
        notes=notes,
        recovery=recovery,
    )


def get_container(connection: HTTPConnection) -> NotesContainer:
    return connection.app.state.container
