"""Pydantic schemas for the media library."""
import time
import uuid

from pydantic import BaseModel, Field


class MediaItem(BaseModel):
    """Metadata for a recording stored in the media library.

    ``stored_filename`` is the UUID-based name on disk; ``original_filename``
    is the sanitized name the client uploaded.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Attachment ID")
    title: str = Field(..., description="Descriptive title")
    original_filename: str = Field(..., description="Original filename")
    stored_filename: str = Field(..., description="Filename on disk (UUID-based)")
    mime_type: str = Field("", description="MIME type of the file")
    size_bytes: int = Field(..., description="File size in bytes")
    uploaded_by: str = Field("", description="User ID of the uploader")
    uploaded_at: float = Field(default_factory=time.time, description="Upload timestamp")
