"""Temp staging of uploaded bytes.

Uploads are copied out of the transport's buffer into a private temporary
file so storage handlers get a stable path. The pipeline owns that path and
removes it exactly once when routing resolves, whatever the outcome.
"""
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from .errors import StagingError

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


@dataclass
class StagedFile:
    """A recording materialized at a temporary path."""
    path: Path
    size_bytes: int
    suggested_filename: str
    _discarded: bool = field(default=False, init=False, repr=False)

    @property
    def discarded(self) -> bool:
        return self._discarded

    def discard(self) -> bool:
        """Delete the temp file. Only the first call has an effect.

        Returns:
            True if this call performed the cleanup.
        """
        if self._discarded:
            return False
        self._discarded = True
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove staged file {self.path}: {e}")
        return True


def stage_upload(
    stream: BinaryIO,
    suggested_filename: str,
    temp_dir: Optional[str] = None,
) -> StagedFile:
    """Write ``stream`` to a uniquely named temp file.

    The file is created with owner-only permissions and keeps the suffix of
    ``suggested_filename``.

    Raises:
        StagingError: If the file cannot be created or written.
    """
    suffix = Path(suggested_filename).suffix.lower()
    try:
        fd, raw_path = tempfile.mkstemp(prefix="recording-", suffix=suffix, dir=temp_dir)
    except OSError as e:
        logger.error(f"Could not create temp file in {temp_dir or tempfile.gettempdir()}: {e}")
        raise StagingError() from e

    path = Path(raw_path)
    try:
        with os.fdopen(fd, "wb") as fh:
            if getattr(stream, "seekable", None) and stream.seekable():
                stream.seek(0)
            shutil.copyfileobj(stream, fh, COPY_CHUNK_SIZE)
        size_bytes = path.stat().st_size
    except OSError as e:
        logger.error(f"Could not write upload to {path}: {e}")
        path.unlink(missing_ok=True)
        raise StagingError() from e

    logger.debug(f"Staged upload at {path} ({size_bytes} bytes)")
    return StagedFile(path=path, size_bytes=size_bytes, suggested_filename=suggested_filename)


@contextmanager
def staged_upload(
    stream: BinaryIO,
    suggested_filename: str,
    temp_dir: Optional[str] = None,
) -> Iterator[StagedFile]:
    """Stage ``stream`` for the duration of the block, then delete it.

    Usage:
        with staged_upload(request.stream, "clip.webm") as staged:
            backend.store(staged, title)
    """
    staged = stage_upload(stream, suggested_filename, temp_dir)
    try:
        yield staged
    finally:
        staged.discard()
