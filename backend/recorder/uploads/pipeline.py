"""UploadPipeline: runs each upload from validation to the JSON outcome.

The pipeline is synchronous per upload and shares no mutable state between
requests beyond the temp directory and the storage backends. A module-level
singleton is initialised in ``recorder/main.py`` from config.
"""
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Optional, Sequence

from recorder.auth.service import Uploader
from recorder.config import AppConfig, get_config
from recorder.media.service import get_media_library

from .errors import BackendError, UploadError
from .normalizer import ResultNormalizer, SavedListener, log_saved_recording
from .routing import ExternalHandled, StorageBackend, StorageHandler, StorageRouter
from .s3_handler import S3StorageHandler
from .schemas import StorageResult, UploadOutcome, UploadRequest
from .staging import staged_upload
from .validator import raise_for_verdict, validate_upload

logger = logging.getLogger(__name__)

LISTENER_THREAD_PREFIX = "recording-saved"


def new_listener_executor() -> ThreadPoolExecutor:
    """Small pool that runs post-save listeners off the request path."""
    return ThreadPoolExecutor(max_workers=2, thread_name_prefix=LISTENER_THREAD_PREFIX)


def default_recording_title(display_name: Optional[str], now: Optional[datetime] = None) -> str:
    """Title for recordings saved to the default backend.

    Examples:
        >>> default_recording_title("Ada", datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc))
        'Voice recording (Ada) 2024-05-01 09:30:00'
    """
    now = now or datetime.now(timezone.utc)
    name = (display_name or "").strip() or "user"
    return f"Voice recording ({name}) {now.astimezone(timezone.utc):%Y-%m-%d %H:%M:%S}"


class UploadPipeline:
    """Runs one upload through validation, staging and storage routing.

    Args:
        router: Storage router holding the external handlers.
        backend: Default storage backend used when no handler claims a file.
        normalizer: Builds outcomes and fires post-save listeners.
        max_bytes: Maximum accepted declared size.
        temp_dir: Directory for staged files. ``None`` → system default.
    """

    def __init__(
        self,
        router: StorageRouter,
        backend: StorageBackend,
        normalizer: ResultNormalizer,
        max_bytes: int,
        temp_dir: Optional[str] = None,
    ) -> None:
        self._router = router
        self._backend = backend
        self._normalizer = normalizer
        self._max_bytes = max_bytes
        self._temp_dir = temp_dir

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def handle(self, request: UploadRequest, uploader: Optional[Uploader] = None) -> UploadOutcome:
        """Process an upload and return its outcome.

        Upload errors become ``ok=false`` outcomes. Unexpected exceptions from
        the default backend are reported as ``BackendError``; anything else
        propagates.
        The staged file is removed before this method returns in every case.
        """
        try:
            result = self._store(request, uploader)
        except UploadError as exc:
            if exc.status_code < 500:
                logger.info("Upload rejected (%d): %s", exc.status_code, exc.message)
            else:
                logger.error("Upload failed (%s): %s", type(exc).__name__, exc.message)
            return self._normalizer.failure(exc)
        return self._normalizer.success(result, request.context)

    def _store(self, request: UploadRequest, uploader: Optional[Uploader]) -> StorageResult:
        raise_for_verdict(validate_upload(request.has_file, request.declared_size, self._max_bytes))

        file_meta = request.file_meta()
        with staged_upload(request.stream, file_meta.name, self._temp_dir) as staged:
            outcome = self._router.route(staged, request.context, file_meta)
            if isinstance(outcome, ExternalHandled):
                return outcome.result

            try:
                return self._backend.store(
                    staged,
                    default_recording_title(uploader.display_name if uploader else None),
                    mime_type=file_meta.type,
                    uploaded_by=uploader.user_id if uploader else "",
                )
            except UploadError:
                raise
            except Exception as exc:
                logger.exception("Default storage backend failed for %s", file_meta.name)
                raise BackendError(str(exc)) from exc


def build_storage_handlers(config: AppConfig) -> list:
    """External handlers enabled by configuration, in priority order."""
    handlers: list = []
    if config.s3.enabled:
        aws = config.secrets.aws
        handlers.append(
            S3StorageHandler(
                bucket=config.s3.bucket,
                prefix=config.s3.prefix,
                claim=config.s3.claim,
                public_base_url=config.s3.public_base_url,
                region_name=config.s3.region,
                aws_access_key_id=aws.access_key_id or None,
                aws_secret_access_key=aws.secret_access_key or None,
                aws_session_token=aws.session_token or None,
            )
        )
        logger.info("S3 storage handler enabled: bucket=%s claim=%s", config.s3.bucket, config.s3.claim)
    return handlers


def build_upload_pipeline(
    config: AppConfig,
    backend: StorageBackend,
    handlers: Optional[Sequence[StorageHandler]] = None,
    listeners: Sequence[SavedListener] = (log_saved_recording,),
    executor: Optional[Executor] = None,
) -> UploadPipeline:
    """Assemble an UploadPipeline from config.

    Args:
        config: Application config.
        backend: Default storage backend.
        handlers: External handlers; defaults to those enabled in config.
        listeners: Post-save listeners.
        executor: Optional executor for listeners.
    """
    if handlers is None:
        handlers = build_storage_handlers(config)
    return UploadPipeline(
        router=StorageRouter(handlers),
        backend=backend,
        normalizer=ResultNormalizer(listeners, executor=executor),
        max_bytes=config.uploads.max_bytes,
        temp_dir=config.uploads.temp_dir,
    )


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_pipeline: Optional[UploadPipeline] = None


def get_upload_pipeline() -> UploadPipeline:
    """Return the global UploadPipeline, building it from config on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_upload_pipeline(
            get_config(),
            get_media_library(),
            executor=new_listener_executor(),
        )
    return _pipeline


def set_upload_pipeline(pipeline: Optional[UploadPipeline]) -> None:
    """Set (or replace) the global UploadPipeline instance."""
    global _pipeline
    _pipeline = pipeline
