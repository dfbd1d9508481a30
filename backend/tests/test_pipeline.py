"""End-to-end tests for UploadPipeline without the HTTP layer.

Every test that gets past validation also checks that the staging directory
is empty afterwards: the staged file is removed on every exit path.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from recorder.auth.service import Uploader
from recorder.config import AppConfig, reset_config, set_config
from recorder.media.service import set_media_library
from recorder.uploads.pipeline import (
    build_upload_pipeline,
    default_recording_title,
    get_upload_pipeline,
    set_upload_pipeline,
)
from recorder.uploads.routing import StorageBackend
from recorder.uploads.s3_handler import S3StorageHandler
from recorder.uploads.schemas import UploadContext, UploadRequest

UPLOADER = Uploader(user_id="42", display_name="Ada", capabilities=["upload_files"])


@pytest.fixture
def spy_backend(media_library):
    """Wraps the real media library so calls can be counted."""
    backend = MagicMock(spec=StorageBackend, wraps=media_library)
    return backend


class TestDefaultPath:
    def test_scenario_default_backend(self, make_pipeline, make_request, staging_dir, saved_events):
        """10-byte file, folder=demo, no handler, max 1000 → stored by default backend."""
        pipeline = make_pipeline(max_bytes=1000)
        request = make_request(context=UploadContext(folder="demo"))

        outcome = pipeline.handle(request, UPLOADER)

        payload = outcome.to_payload()
        assert payload["ok"] is True
        assert payload["storage"]["provider"] == "default"
        assert payload["attachment_id"] is not None
        assert payload["url"] is not None
        assert list(staging_dir.iterdir()) == []
        assert len(saved_events) == 1
        assert saved_events[0][1].folder == "demo"

    def test_default_backend_invoked_exactly_once(self, make_pipeline, make_request, spy_backend):
        declining = MagicMock(return_value=None)
        pipeline = make_pipeline(handlers=[declining], backend=spy_backend)

        outcome = pipeline.handle(make_request(), UPLOADER)

        assert outcome.result.provider == "default"
        declining.assert_called_once()
        spy_backend.store.assert_called_once()

    def test_default_backend_receives_title_and_uploader(self, make_pipeline, make_request, spy_backend):
        pipeline = make_pipeline(backend=spy_backend)

        pipeline.handle(make_request(), UPLOADER)

        args, kwargs = spy_backend.store.call_args
        assert args[1].startswith("Voice recording (Ada) ")
        assert kwargs["mime_type"] == "audio/webm"
        assert kwargs["uploaded_by"] == "42"

    def test_stored_content_matches_upload(self, make_pipeline, make_request, media_library):
        outcome = make_pipeline().handle(make_request(b"abc"), UPLOADER)
        path = media_library.get_item_path(outcome.result.backend_id)
        assert path.read_bytes() == b"abc"

    def test_filename_override_is_used(self, make_pipeline, make_request, media_library):
        request = make_request(filename="blob", mime_type="", filename_override="memo.ogg")

        outcome = make_pipeline().handle(request, UPLOADER)

        item = media_library.get_item(outcome.result.backend_id)
        assert item.original_filename == "memo.ogg"
        assert item.mime_type == "audio/ogg"

    def test_anonymous_title_falls_back_to_user(self, make_pipeline, make_request, media_library):
        outcome = make_pipeline().handle(make_request())
        item = media_library.get_item(outcome.result.backend_id)
        assert item.title.startswith("Voice recording (user) ")


class TestExternalPath:
    def test_scenario_external_handler(self, make_pipeline, make_request, spy_backend, staging_dir):
        """External handler claims → its provider wins, no id, default untouched."""
        handler = MagicMock(return_value={"provider": "external-x", "url": "https://cdn.example/x.webm"})
        pipeline = make_pipeline(handlers=[handler], backend=spy_backend)

        payload = pipeline.handle(make_request(), UPLOADER).to_payload()

        assert payload["ok"] is True
        assert payload["storage"]["provider"] == "external-x"
        assert payload["attachment_id"] is None
        assert payload["url"] == "https://cdn.example/x.webm"
        spy_backend.store.assert_not_called()
        assert list(staging_dir.iterdir()) == []

    def test_handler_sees_staged_path_context_and_meta(self, make_pipeline, make_request):
        seen = {}

        def handler(path, context, meta):
            seen.update(content=path.read_bytes(), context=context, meta=meta)
            return {"provider": "seen"}

        context = UploadContext(consumer="plugin", requested_storage="cdn")
        make_pipeline(handlers=[handler]).handle(make_request(context=context), UPLOADER)

        assert seen["content"] == b"0123456789"
        assert seen["context"] == context
        assert seen["meta"].name == "clip.webm"
        assert seen["meta"].type == "audio/webm"
        assert seen["meta"].size == 10

    def test_external_success_notifies(self, make_pipeline, make_request, saved_events):
        handler = MagicMock(return_value={"provider": "external-x"})
        make_pipeline(handlers=[handler]).handle(make_request(), UPLOADER)
        assert saved_events[0][0].provider == "external-x"


class TestFailures:
    def test_scenario_too_large(self, make_pipeline, make_request, staging_dir, spy_backend):
        pipeline = make_pipeline(max_bytes=5, backend=spy_backend)

        outcome = pipeline.handle(make_request(), UPLOADER)

        assert outcome.status_code == 413
        assert outcome.to_payload()["error"].startswith("File too large")
        assert list(staging_dir.iterdir()) == []
        spy_backend.store.assert_not_called()

    def test_missing_file_does_not_stage(self, make_pipeline, staging_dir):
        with patch("recorder.uploads.pipeline.staged_upload") as staged_upload:
            outcome = make_pipeline().handle(UploadRequest(stream=None), UPLOADER)

        assert outcome.status_code == 400
        assert outcome.ok is False
        staged_upload.assert_not_called()
        assert list(staging_dir.iterdir()) == []

    def test_external_handler_error_cleans_up(self, make_pipeline, make_request, spy_backend, staging_dir, saved_events):
        handler = MagicMock(side_effect=TimeoutError("cdn timeout"))
        pipeline = make_pipeline(handlers=[handler], backend=spy_backend)

        outcome = pipeline.handle(make_request(), UPLOADER)

        assert outcome.status_code == 500
        assert outcome.error == "External storage handler failed to store the file."
        spy_backend.store.assert_not_called()
        assert list(staging_dir.iterdir()) == []
        assert saved_events == []

    def test_backend_error_cleans_up_and_surfaces_message(self, make_pipeline, make_request, staging_dir, saved_events):
        with patch("recorder.media.service.shutil.copyfile", side_effect=OSError("Read-only file system")):
            outcome = make_pipeline().handle(make_request(), UPLOADER)

        assert outcome.status_code == 500
        assert outcome.error == "Read-only file system"
        assert list(staging_dir.iterdir()) == []
        assert saved_events == []

    def test_staging_error(self, make_request, media_library, tmp_path):
        pipeline = build_upload_pipeline(AppConfig(), media_library, handlers=[])
        pipeline._temp_dir = str(tmp_path / "gone")

        outcome = pipeline.handle(make_request(), UPLOADER)

        assert outcome.status_code == 500
        assert outcome.error == "Unable to persist uploaded file to a temp location."

    def test_unexpected_backend_exception_becomes_backend_error(self, make_pipeline, make_request, staging_dir, saved_events):
        backend = MagicMock(spec=StorageBackend)
        backend.store.side_effect = RuntimeError("quota exceeded")

        outcome = make_pipeline(backend=backend).handle(make_request(), UPLOADER)

        assert outcome.status_code == 500
        assert outcome.to_payload() == {"ok": False, "error": "quota exceeded"}
        assert list(staging_dir.iterdir()) == []
        assert saved_events == []


class TestBuildPipeline:
    def test_limits_come_from_config(self, media_library):
        config = AppConfig(uploads={"max_mb": 2})
        pipeline = build_upload_pipeline(config, media_library)
        assert pipeline.max_bytes == 2 * 1024 * 1024

    def test_s3_handler_registered_when_enabled(self, media_library):
        config = AppConfig(s3={"enabled": True, "bucket": "voice"})
        pipeline = build_upload_pipeline(config, media_library)
        handlers = pipeline._router.handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], S3StorageHandler)
        assert handlers[0].bucket == "voice"

    def test_no_handlers_by_default(self, media_library):
        pipeline = build_upload_pipeline(AppConfig(), media_library)
        assert pipeline._router.handlers == ()

    def test_lazy_singleton_runs_listeners_off_request_path(self, media_library):
        set_config(AppConfig())
        set_media_library(media_library)
        set_upload_pipeline(None)
        try:
            executor = get_upload_pipeline()._normalizer._executor
            assert isinstance(executor, ThreadPoolExecutor)
            executor.shutdown()
        finally:
            set_upload_pipeline(None)
            set_media_library(None)
            reset_config()

    def test_singleton_round_trip(self, media_library):
        pipeline = build_upload_pipeline(AppConfig(), media_library)
        set_upload_pipeline(pipeline)
        try:
            assert get_upload_pipeline() is pipeline
        finally:
            set_upload_pipeline(None)


class TestDefaultRecordingTitle:
    def test_format(self):
        now = datetime(2024, 5, 1, 9, 30, 5, tzinfo=timezone.utc)
        assert default_recording_title("Ada", now) == "Voice recording (Ada) 2024-05-01 09:30:05"

    def test_blank_name(self):
        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert default_recording_title("  ", now) == "Voice recording (user) 2024-05-01 00:00:00"

    def test_converts_to_utc(self):
        from datetime import timedelta

        now = datetime(2024, 5, 1, 11, 0, tzinfo=timezone(timedelta(hours=2)))
        assert default_recording_title("Ada", now).endswith("2024-05-01 09:00:00")
