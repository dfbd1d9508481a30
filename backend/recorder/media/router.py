"""FastAPI router serving recordings stored in the media library."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from .schemas import MediaItem
from .service import MediaLibraryService, get_media_library

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])


@router.get("/{item_id}/meta", response_model=MediaItem)
async def get_media_meta(
    item_id: str,
    library: MediaLibraryService = Depends(get_media_library),
) -> MediaItem:
    """Return the stored metadata for a recording.

    Raises:
        HTTPException 404: If the item is unknown
    """
    item = library.get_item(item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Media item not found")
    return item


@router.get("/{item_id}")
async def download_media(
    item_id: str,
    library: MediaLibraryService = Depends(get_media_library),
):
    """Download a recording by attachment ID.

    Raises:
        HTTPException 404: If the item or its file is missing
    """
    item = library.get_item(item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Media item not found")

    file_path = library.get_item_path(item_id)
    if not file_path:
        logger.warning(f"Media item {item_id} has no file on disk")
        raise HTTPException(status_code=404, detail="Media file not found on disk")

    return FileResponse(
        path=file_path,
        filename=item.original_filename,
        media_type=item.mime_type or "application/octet-stream",
    )
