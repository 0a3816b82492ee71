"""
StripScan Backend — Thumbnail Route
=====================================

What:  Serves generated thumbnails under the public thumbnails prefix.
Why:   The history screen renders `thumbnailUrl` directly.

Security:
    - Only a bare filename is accepted; FileService.resolve_thumbnail rejects
      anything that would resolve outside the thumbnails directory
    - Raw uploads are never served
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from stripscan.config import settings
from stripscan.dependencies import get_upload_pipeline
from stripscan.exceptions import NotFoundError
from stripscan.services.upload_pipeline import UploadPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Uploads"])


@router.get(
    f"{settings.thumbnails_url_prefix.rstrip('/')}/{{filename}}",
    summary="Serve a submission thumbnail",
    responses={
        200: {"description": "JPEG thumbnail"},
        400: {"description": "Invalid file path"},
        404: {"description": "Thumbnail not found"},
    },
)
async def serve_thumbnail(
    filename: str,
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
) -> FileResponse:
    path = pipeline.file_service.resolve_thumbnail(filename)

    if not path.is_file():
        raise NotFoundError(resource="thumbnail", resource_id=filename)

    return FileResponse(
        path=str(path),
        media_type="image/jpeg",
        headers={"Cache-Control": "public, max-age=86400"},
    )
