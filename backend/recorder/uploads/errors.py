"""Upload failure taxonomy.

Every failure is terminal for the request and carries the HTTP status and
the message surfaced in the JSON ``error`` field.

    MissingFile          400  detected before any side effect
    TooLarge             413  detected before any side effect
    StagingError         500  temp file could not be written
    ExternalHandlerError 500  an external storage handler raised
    BackendError         500  default backend failed (raw message surfaced)
"""
from typing import Optional


class UploadError(Exception):
    """Base class for all upload pipeline failures."""

    status_code: int = 500
    default_message: str = "Upload failed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class MissingFile(UploadError):
    status_code = 400
    default_message = 'Missing file field. Expected multipart/form-data with "file".'


class TooLarge(UploadError):
    status_code = 413
    default_message = "File too large. Please record a shorter clip."


class StagingError(UploadError):
    default_message = "Unable to persist uploaded file to a temp location."


class ExternalHandlerError(UploadError):
    default_message = "External storage handler failed to store the file."

    def __init__(self, message: Optional[str] = None, handler: str = "") -> None:
        super().__init__(message)
        self.handler = handler


class BackendError(UploadError):
    """Default backend failure; ``message`` is the store's own error text."""
