"""FastAPI router for the recorder upload endpoints.

Endpoints:
    POST /recorder/v1/upload  - Upload a recording (multipart/form-data)
    GET  /recorder/v1/config  - Settings the browser recorder needs
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from recorder.auth.service import (
    UPLOAD_CAPABILITY,
    NonceService,
    Uploader,
    get_current_uploader,
    get_nonce_service,
)
from recorder.config import get_config

from .pipeline import UploadPipeline, get_upload_pipeline
from .schemas import UploadContext, UploadRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recorder/v1", tags=["recorder"])

NONCE_ACTION = "recorder_upload"


class RecorderConfigResponse(BaseModel):
    """Client-side recorder settings, keyed the way the browser script reads them."""
    model_config = ConfigDict(populate_by_name=True)

    rest_url: str = Field(..., alias="restUrl")
    upload_nonce: str = Field(..., alias="uploadNonce")
    max_seconds: int = Field(..., alias="maxSeconds")
    max_bytes: int = Field(..., alias="maxBytes")
    hint_text: str = Field(..., alias="hintText")


def _declared_size(upload: UploadFile) -> Optional[int]:
    """Size reported for the file part, measured from the spool if absent."""
    if upload.size is not None:
        return upload.size
    fh = upload.file
    if not fh.seekable():
        return None
    pos = fh.tell()
    fh.seek(0, 2)
    size = fh.tell()
    fh.seek(pos)
    return size


def require_upload_permission(
    uploader: Uploader,
    upload_nonce: Optional[str],
    nonces: NonceService,
) -> None:
    """Reject users without upload capability or a valid upload nonce.

    Raises:
        HTTPException 403: If either check fails
    """
    if not uploader.can(UPLOAD_CAPABILITY):
        logger.warning(f"User {uploader.user_id} lacks {UPLOAD_CAPABILITY}")
        raise HTTPException(status_code=403, detail="Sorry, you are not allowed to upload files.")
    if not nonces.verify(upload_nonce, NONCE_ACTION, uploader.user_id):
        logger.warning(f"Invalid upload nonce for user {uploader.user_id}")
        raise HTTPException(status_code=403, detail="Invalid or expired upload nonce.")


@router.post("/upload", name="upload_recording")
def upload_recording(
    file: Optional[UploadFile] = File(None),
    filename: Optional[str] = Form(None),
    upload_nonce: Optional[str] = Form(None),
    consumer: Optional[str] = Form(None),
    reference_id: Optional[str] = Form(None),
    requested_storage: Optional[str] = Form(None),
    folder: Optional[str] = Form(None),
    uploader: Uploader = Depends(get_current_uploader),
    nonces: NonceService = Depends(get_nonce_service),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
) -> JSONResponse:
    """Upload an audio recording.

    The file is saved to the media library unless an external storage
    handler claims it based on the context fields.

    Args:
        file: The recording (required)
        filename: Optional filename overriding the part's declared name
        upload_nonce: Anti-forgery nonce from ``GET /recorder/v1/config``
        consumer: Optional calling integration
        reference_id: Optional caller-side reference
        requested_storage: Optional storage preference, e.g. "s3"
        folder: Optional folder hint

    Returns:
        200 ``{ok, attachment_id, url, storage}`` on success, otherwise
        ``{ok: false, error}`` with 400 (missing file), 413 (too large) or
        500 (staging or storage failure).

    Raises:
        HTTPException 401: If no user is logged in
        HTTPException 403: If the user may not upload or the nonce is invalid
    """
    require_upload_permission(uploader, upload_nonce, nonces)

    context = UploadContext(
        consumer=consumer,
        reference_id=reference_id,
        requested_storage=requested_storage,
        folder=folder,
    )
    request = UploadRequest(
        stream=file.file if file is not None else None,
        filename=file.filename if file is not None else None,
        mime_type=file.content_type if file is not None else None,
        declared_size=_declared_size(file) if file is not None else None,
        context=context,
        filename_override=filename,
    )

    outcome = pipeline.handle(request, uploader)
    return JSONResponse(content=outcome.to_payload(), status_code=outcome.status_code)


@router.get("/config", response_model=RecorderConfigResponse)
async def get_recorder_config(
    request: Request,
    uploader: Uploader = Depends(get_current_uploader),
    nonces: NonceService = Depends(get_nonce_service),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
) -> RecorderConfigResponse:
    """Return the settings the browser recorder is initialised with.

    Example::

        GET /recorder/v1/config

        200 OK
        {
            "restUrl": "http://localhost:8000/recorder/v1/upload",
            "uploadNonce": "5f0c9a...",
            "maxSeconds": 300,
            "maxBytes": 26214400,
            "hintText": "Chrome recommended. Keep recordings reasonably short."
        }
    """
    uploads = get_config().uploads
    return RecorderConfigResponse(
        rest_url=str(request.url_for("upload_recording")),
        upload_nonce=nonces.create(NONCE_ACTION, uploader.user_id),
        max_seconds=uploads.max_seconds,
        max_bytes=pipeline.max_bytes,
        hint_text=uploads.hint_text,
    )
