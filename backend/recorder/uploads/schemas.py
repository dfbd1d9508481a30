"""Pydantic schemas for recording uploads.

This module defines the values that travel through the upload pipeline:
- UploadContext: optional caller-supplied annotations (consumer, folder, ...)
- FileMeta: sanitized name, mime type and size handed to storage handlers
- StorageResult: where a recording ended up, regardless of backend
- UploadOutcome: the externally visible result and its HTTP status
- UploadRequest: the explicit value carrying the uploaded stream

Context values are informational only. They steer routing and annotate
results but are never used for authorization.
"""
import mimetypes
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, BinaryIO, Dict, Mapping, Optional, Union

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_FILENAME = "recording.webm"
DEFAULT_PROVIDER = "default"
EXTERNAL_PROVIDER = "external"

# Browsers record to WebM/Ogg, which older mime tables do not always know.
EXTRA_MIME_TYPES = {
    ".webm": "video/webm",
    ".weba": "audio/webm",
    ".ogg": "audio/ogg",
}
for _ext, _mime in EXTRA_MIME_TYPES.items():
    mimetypes.add_type(_mime, _ext)

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")
_FILENAME_BAD_CHARS_RE = re.compile(r"[^A-Za-z0-9._\- ]")


def sanitize_text(value: Any) -> str:
    """Reduce an arbitrary form value to a single line of plain text."""
    if value is None:
        return ""
    text = _TAG_RE.sub("", str(value))
    text = _CONTROL_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def sanitize_filename(name: Optional[str], default: str = DEFAULT_FILENAME) -> str:
    """Return a safe basename for ``name``.

    Directory components are dropped, unusual characters removed and
    whitespace replaced by dashes. Falls back to ``default`` when nothing
    usable remains.

    Examples:
        >>> sanitize_filename("../../etc/my clip.webm")
        'my-clip.webm'
        >>> sanitize_filename("")
        'recording.webm'
    """
    if not name:
        return default
    base = PurePosixPath(str(name).replace("\\", "/")).name
    base = _FILENAME_BAD_CHARS_RE.sub("", base)
    base = _WHITESPACE_RE.sub("-", base.strip())
    base = base.strip(".-_")
    return base or default


def guess_mime_type(filename: str) -> str:
    """Infer a mime type from the filename extension, or ``""``."""
    mime, _ = mimetypes.guess_type(filename, strict=False)
    return mime or ""


class UploadContext(BaseModel):
    """Optional annotations supplied alongside an upload."""
    consumer: str = Field("", description="Calling integration, e.g. a plugin name")
    reference_id: str = Field("", description="Caller-side reference for the recording")
    requested_storage: str = Field("", description="Preferred storage tag, e.g. 's3'")
    folder: str = Field("", description="Logical folder hint for the storage backend")

    @field_validator("consumer", "reference_id", "requested_storage", "folder", mode="before")
    @classmethod
    def _sanitize(cls, value: Any) -> str:
        return sanitize_text(value)


class FileMeta(BaseModel):
    """File details handed to external storage handlers."""
    name: str = Field(..., description="Sanitized filename")
    type: str = Field("", description="Declared (or inferred) MIME type")
    size: int = Field(0, description="Declared size in bytes")


class StorageResult(BaseModel):
    """Where a recording was persisted.

    ``raw`` keeps the backend-specific fields so they can be forwarded to
    the client unchanged under ``storage``.
    """
    model_config = ConfigDict(frozen=True)

    provider: str = Field(..., description="Storage provider tag")
    locator: Optional[str] = Field(None, description="URL or equivalent reference")
    backend_id: Optional[Union[int, str]] = Field(None, description="Backend-assigned id")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Backend-specific fields")

    @field_validator("raw", mode="before")
    @classmethod
    def _json_safe_raw(cls, value: Any) -> Dict[str, Any]:
        # Raises ValueError for values that have no JSON form
        encoded = jsonable_encoder(dict(value or {}))
        return {str(k): v for k, v in encoded.items()}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StorageResult":
        """Build a result from a handler-returned mapping.

        Recognizes ``url``/``locator`` and ``attachment_id``/``backend_id``.
        A mapping without ``provider`` is tagged ``"external"``.
        """
        provider = data.get("provider") or EXTERNAL_PROVIDER
        locator = data.get("url", data.get("locator"))
        backend_id = data.get("attachment_id", data.get("backend_id"))
        if backend_id is not None and not isinstance(backend_id, (int, str)):
            backend_id = str(backend_id)
        return cls(
            provider=str(provider),
            locator=None if locator is None else str(locator),
            backend_id=backend_id,
            raw=dict(data),
        )

    def storage_payload(self) -> Dict[str, Any]:
        """Fields returned to the client under ``storage``."""
        payload = dict(self.raw)
        payload["provider"] = self.provider
        return payload


class UploadOutcome(BaseModel):
    """Result of one upload, independent of the backend that handled it."""
    ok: bool
    result: Optional[StorageResult] = None
    error: Optional[str] = None
    status_code: int = 200

    @classmethod
    def succeeded(cls, result: StorageResult) -> "UploadOutcome":
        return cls(ok=True, result=result)

    @classmethod
    def failed(cls, message: str, status_code: int) -> "UploadOutcome":
        return cls(ok=False, error=message, status_code=status_code)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the response body.

        Successful responses also expose ``attachment_id`` and ``url`` at the
        top level for clients written against the single-backend shape.
        """
        if not self.ok or self.result is None:
            return {"ok": False, "error": self.error}
        return {
            "ok": True,
            "attachment_id": self.result.backend_id,
            "url": self.result.locator,
            "storage": self.result.storage_payload(),
        }


@dataclass
class UploadRequest:
    """An incoming upload, passed explicitly through the pipeline.

    Attributes:
        stream: Readable binary stream with the file body, or None when the
            request carried no file part.
        filename: Filename declared by the transport for the file part.
        mime_type: MIME type declared by the transport.
        declared_size: Size reported by the transport, if known.
        context: Optional caller annotations.
        filename_override: Client-supplied filename that replaces ``filename``.
    """
    stream: Optional[BinaryIO]
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    declared_size: Optional[int] = None
    context: UploadContext = field(default_factory=UploadContext)
    filename_override: Optional[str] = None

    @property
    def has_file(self) -> bool:
        return self.stream is not None

    @property
    def effective_filename(self) -> str:
        return sanitize_filename(self.filename_override or self.filename)

    def file_meta(self) -> FileMeta:
        name = self.effective_filename
        mime = (self.mime_type or "").strip()
        if not mime or mime == "application/octet-stream":
            mime = guess_mime_type(name) or mime
        return FileMeta(name=name, type=mime, size=max(int(self.declared_size or 0), 0))
