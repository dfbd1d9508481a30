"""Shared test fixtures and configuration for backend tests."""
import io
from pathlib import Path
from typing import Generator, List, Tuple

import pytest
from fastapi.testclient import TestClient

from recorder.auth.service import NonceService, set_nonce_service
from recorder.config import AppConfig, reset_config, set_config
from recorder.main import app
from recorder.media.service import MediaLibraryService, set_media_library
from recorder.uploads.normalizer import ResultNormalizer
from recorder.uploads.pipeline import UploadPipeline, set_upload_pipeline
from recorder.uploads.routing import StorageRouter
from recorder.uploads.schemas import StorageResult, UploadContext, UploadRequest

TEST_SECRET = "test-secret"


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    """Private temp directory so tests can assert nothing is left behind."""
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def media_library(tmp_path: Path) -> Generator[MediaLibraryService, None, None]:
    """Media library rooted in a temp directory."""
    library = MediaLibraryService(
        storage_dir=str(tmp_path / "media"),
        db_path=str(tmp_path / "media.duckdb"),
        base_url="http://testserver",
    )
    yield library
    library.close()


@pytest.fixture
def saved_events() -> List[Tuple[StorageResult, UploadContext]]:
    return []


@pytest.fixture
def make_pipeline(media_library, staging_dir, saved_events):
    """Factory for pipelines that record post-save notifications."""

    def _make(handlers=(), max_bytes: int = 1000, backend=None) -> UploadPipeline:
        return UploadPipeline(
            router=StorageRouter(handlers),
            backend=backend or media_library,
            normalizer=ResultNormalizer([lambda r, c: saved_events.append((r, c))]),
            max_bytes=max_bytes,
            temp_dir=str(staging_dir),
        )

    return _make


@pytest.fixture
def nonces() -> NonceService:
    return NonceService(TEST_SECRET)


@pytest.fixture
def api_client(nonces, media_library) -> Generator[TestClient, None, None]:
    """TestClient with config, nonces and media library installed.

    Tests install their own pipeline with ``set_upload_pipeline``.
    """
    set_config(AppConfig())
    set_nonce_service(nonces)
    set_media_library(media_library)
    yield TestClient(app)
    set_upload_pipeline(None)
    set_media_library(None)
    set_nonce_service(None)
    reset_config()


@pytest.fixture
def make_request():
    """Factory for UploadRequests with a matching declared size."""

    def _make(content: bytes = b"0123456789", **kwargs) -> UploadRequest:
        kwargs.setdefault("filename", "clip.webm")
        kwargs.setdefault("mime_type", "audio/webm")
        kwargs.setdefault("declared_size", len(content))
        return UploadRequest(stream=io.BytesIO(content), **kwargs)

    return _make
