"""Media library storage service.

The default storage backend for recordings. Files are copied into
``{storage_dir}/{uuid}.{ext}`` and metadata is tracked in DuckDB. The
locator returned for each item is ``{base_url}/media/{id}``, served by the
media router.

Thread Safety:
    Uploads are handled on FastAPI's thread pool, so access to the single
    DuckDB connection is serialized with a lock.
"""
import logging
import shutil
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import duckdb

from recorder.config import get_config
from recorder.uploads.errors import BackendError
from recorder.uploads.routing import StorageBackend
from recorder.uploads.schemas import DEFAULT_PROVIDER, StorageResult
from recorder.uploads.staging import StagedFile
from .schemas import MediaItem

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, title, original_filename, stored_filename, mime_type, "
    "size_bytes, uploaded_by, uploaded_at"
)


def _to_db_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def _from_db_timestamp(value: Optional[datetime]) -> float:
    if value is None:
        return 0
    return value.replace(tzinfo=timezone.utc).timestamp()


class MediaLibraryService(StorageBackend):
    """Stores recordings on disk with metadata in DuckDB."""

    def __init__(
        self,
        storage_dir: str = "media",
        db_path: str = "media_library.duckdb",
        base_url: str = "http://localhost:8000",
    ) -> None:
        self._storage_dir = Path(storage_dir)
        self._db_path = db_path
        self._base_url = base_url.rstrip("/")
        self._lock = threading.Lock()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._ensure_storage_dir()
        self._initialize_db()

    @property
    def storage_dir(self) -> Path:
        return self._storage_dir

    def _ensure_storage_dir(self) -> None:
        self._storage_dir.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create database connection."""
        if self._connection is None:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Initialize the database schema."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS media_items (
                    id VARCHAR PRIMARY KEY,
                    title VARCHAR NOT NULL,
                    original_filename VARCHAR NOT NULL,
                    stored_filename VARCHAR NOT NULL,
                    mime_type VARCHAR NOT NULL,
                    size_bytes BIGINT NOT NULL,
                    uploaded_by VARCHAR NOT NULL,
                    uploaded_at TIMESTAMP NOT NULL
                )
            """)

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def item_url(self, item_id: str) -> str:
        return f"{self._base_url}/media/{item_id}"

    def store(
        self,
        staged: StagedFile,
        title: str,
        *,
        mime_type: str = "",
        uploaded_by: str = "",
    ) -> StorageResult:
        """Copy a staged recording into the library and record its metadata.

        The staged file itself is left in place; its owner deletes it.

        Args:
            staged: The staged recording.
            title: Descriptive title for the item.
            mime_type: MIME type to record.
            uploaded_by: User ID of the uploader.

        Returns:
            StorageResult with provider ``"default"``, the attachment id and
            a resolvable URL.

        Raises:
            BackendError: If the copy or the metadata insert fails.
        """
        item_id = str(uuid.uuid4())
        ext = Path(staged.suggested_filename).suffix.lower()
        item = MediaItem(
            id=item_id,
            title=title,
            original_filename=staged.suggested_filename,
            stored_filename=f"{item_id}{ext}",
            mime_type=mime_type,
            size_bytes=staged.size_bytes,
            uploaded_by=uploaded_by,
        )
        target = self._storage_dir / item.stored_filename

        try:
            shutil.copyfile(staged.path, target)
            with self._lock:
                self._get_connection().execute(
                    f"INSERT INTO media_items ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        item.id,
                        item.title,
                        item.original_filename,
                        item.stored_filename,
                        item.mime_type,
                        item.size_bytes,
                        item.uploaded_by,
                        _to_db_timestamp(item.uploaded_at),
                    ],
                )
        except (OSError, duckdb.Error) as e:
            logger.error(f"Media library store failed for {staged.suggested_filename}: {e}")
            target.unlink(missing_ok=True)
            raise BackendError(str(e)) from e

        logger.info(f"Saved recording: {target} ({item.size_bytes} bytes)")

        url = self.item_url(item.id)
        return StorageResult(
            provider=DEFAULT_PROVIDER,
            locator=url,
            backend_id=item.id,
            raw={
                "attachment_id": item.id,
                "url": url,
                "title": item.title,
            },
        )

    def get_item(self, item_id: str) -> Optional[MediaItem]:
        """Get item metadata by ID."""
        with self._lock:
            row = self._get_connection().execute(
                f"SELECT {_COLUMNS} FROM media_items WHERE id = ?",
                [item_id],
            ).fetchone()

        if not row:
            return None

        return MediaItem(
            id=row[0],
            title=row[1],
            original_filename=row[2],
            stored_filename=row[3],
            mime_type=row[4],
            size_bytes=row[5],
            uploaded_by=row[6],
            uploaded_at=_from_db_timestamp(row[7]),
        )

    def get_item_path(self, item_id: str) -> Optional[Path]:
        """Get the file path on disk for an item ID."""
        item = self.get_item(item_id)
        if not item:
            return None

        file_path = self._storage_dir / item.stored_filename
        if not file_path.exists():
            return None

        return file_path


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_library: Optional[MediaLibraryService] = None


def get_media_library() -> MediaLibraryService:
    """Return the global media library, creating it from config on first use."""
    global _library
    if _library is None:
        config = get_config()
        _library = MediaLibraryService(
            storage_dir=config.media.storage_dir,
            db_path=config.media.db_path,
            base_url=config.server.base_url,
        )
    return _library


def set_media_library(library: Optional[MediaLibraryService]) -> None:
    """Set (or replace) the global media library instance."""
    global _library
    _library = library
