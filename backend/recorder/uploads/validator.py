"""Presence and size checks for incoming uploads.

The size check relies on the size declared by the transport. It is a fast
backstop, not a replacement for a request body limit enforced by the server
in front of the application.
"""
from enum import Enum
from typing import Optional

from .errors import MissingFile, TooLarge, UploadError


class Verdict(str, Enum):
    """Outcome of validating an upload."""
    ACCEPT = "accept"
    MISSING_FILE = "missing_file"
    TOO_LARGE = "too_large"


def validate_upload(present: bool, declared_size: Optional[int], max_bytes: int) -> Verdict:
    """Decide whether an upload may proceed.

    Presence is checked before size. An unknown or zero declared size is
    accepted.

    Args:
        present: Whether the request carried a file part.
        declared_size: Size reported by the transport, if any.
        max_bytes: Configured maximum in bytes.

    Returns:
        The verdict for this upload.
    """
    if not present:
        return Verdict.MISSING_FILE
    if declared_size and declared_size > max_bytes:
        return Verdict.TOO_LARGE
    return Verdict.ACCEPT


def raise_for_verdict(verdict: Verdict) -> None:
    """Raise the matching upload error for a rejecting verdict."""
    error: Optional[UploadError] = None
    if verdict is Verdict.MISSING_FILE:
        error = MissingFile()
    elif verdict is Verdict.TOO_LARGE:
        error = TooLarge()
    if error is not None:
        raise error
