"""Shared fixtures: every test gets its own database, blob directory and work directory."""

import httpx
import pytest

from app import create_app
from config import Settings
from services.container import build_container
from services.transcoder import FunctionTranscoder

PREFIX = "/chest-of-notes"


def fake_transcode(data: bytes) -> bytes:
    """Deterministic stand-in for ffmpeg: tags the input so output differs from it."""
    return b"MP4:" + data


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        db_path=tmp_path / "notes.db",
        blob_dir=tmp_path / "blobs",
        work_dir=tmp_path / "work",
        route_prefix=PREFIX,
        max_upload_size=1024 * 1024,
        sse_keepalive_seconds=0.05,
        shutdown_drain_seconds=2.0,
    )


@pytest.fixture
def make_container(settings):
    created = []

    def factory(func=fake_transcode, **overrides):
        config = settings.model_copy(update=overrides) if overrides else settings
        transcoder = FunctionTranscoder(func, config.work_dir, config.canonical_suffix)
        container = build_container(config, transcoder=transcoder)
        created.append(container)
        return container

    yield factory
    for container in created:
        container.close()


@pytest.fixture
def container(make_container):
    return make_container()


@pytest.fixture
def app(container):
    return create_app(container)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
