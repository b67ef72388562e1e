"""Serves blobs of the local store behind HMAC-signed, expiring URLs."""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse

from ..errors import TransientBackendError
from ..stores.base import BlobStore
from .deps import get_blob_store

router = APIRouter()
logger = logging.getLogger(__name__)

MEDIA_TYPE_MAP = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
}


@router.get("/{path:path}")
async def get_blob(
    path: str,
    expires: int = Query(...),
    signature: str = Query(...),
    store: BlobStore = Depends(get_blob_store),
):
    verify = getattr(store, "verify_signature", None)
    if verify is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blobs are served by the object store.")
    if not verify(path, expires, signature):
        logger.warning("Rejected signed URL for '%s' (expired or tampered).", path)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired signature.")

    try:
        file_path = store.resolve(path)
    except TransientBackendError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid path.")
    if not file_path.exists() or not file_path.is_file():
        logger.warning("Blob '%s' not found at '%s'.", path, file_path)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found.")

    media_type = MEDIA_TYPE_MAP.get(Path(path).suffix.lower(), "application/octet-stream")
    logger.info("Serving blob '%s' with media type '%s'.", path, media_type)
    return FileResponse(path=file_path, media_type=media_type)
