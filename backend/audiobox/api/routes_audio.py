"""Audio file REST endpoints.

1. `GET    /audio/files`           – List the caller's files, newest first.
2. `POST   /audio/upload`          – Upload one or more files (multipart `files`).
3. `PATCH  /audio/files/{id}`      – Rename a file.
4. `DELETE /audio/files/{id}`      – Delete a file and its stored blob.
5. `GET    /audio/files/{id}/url`  – Time-limited playback URL.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from pydantic import BaseModel

from ..config import settings
from ..models.audio import AudioFileRecord
from ..services.library import FileLibrary, format_badge, format_duration, format_file_size
from ..services.upload_pipeline import UploadCandidate, UploadOutcome
from .deps import get_library

router = APIRouter()
logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


class AudioFileOut(BaseModel):
    id: str
    file_name: str
    file_path: str
    file_size: int
    duration: float
    mime_type: str
    created_at: datetime
    format_badge: str
    size_label: str
    duration_label: str

    @classmethod
    def from_record(cls, record: AudioFileRecord) -> "AudioFileOut":
        return cls(
            id=record.id,
            file_name=record.file_name,
            file_path=record.file_path,
            file_size=record.file_size,
            duration=record.duration,
            mime_type=record.mime_type,
            created_at=record.created_at,
            format_badge=format_badge(record.mime_type),
            size_label=format_file_size(record.file_size),
            duration_label=format_duration(record.duration),
        )


class UploadResponse(BaseModel):
    outcomes: List[UploadOutcome]
    uploaded: int
    failed: int


class RenameRequest(BaseModel):
    file_name: str


class SignedUrlResponse(BaseModel):
    signed_url: str
    expires_in: int


async def read_candidate(file: UploadFile, max_bytes: int) -> UploadCandidate:
    """Buffer an upload, stopping one chunk past ``max_bytes`` so oversize files fail validation."""
    chunks = []
    bytes_read = 0
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        bytes_read += len(chunk)
        if bytes_read > max_bytes:
            logger.warning("Upload '%s' exceeds %d bytes, not buffering the rest", file.filename, max_bytes)
            declared = getattr(file, "size", None) or bytes_read
            return UploadCandidate(name=file.filename or "", mime_type=file.content_type or "", data=b"", size=max(declared, bytes_read))
        chunks.append(chunk)
    return UploadCandidate(name=file.filename or "", mime_type=file.content_type or "", data=b"".join(chunks))


@router.get("/files", response_model=List[AudioFileOut])
async def list_files(
    search: Optional[str] = Query(None, description="Case-insensitive file name filter"),
    library: FileLibrary = Depends(get_library),
) -> List[AudioFileOut]:
    """List the caller's audio files, newest first."""
    await library.refresh()
    files = library.filtered(search)
    logger.info("Listing %d files for user %s (search=%r)", len(files), library.user_id, search)
    return [AudioFileOut.from_record(r) for r in files]


@router.post("/upload", response_model=UploadResponse)
async def upload_files(
    files: List[UploadFile] = File(...),
    library: FileLibrary = Depends(get_library),
) -> UploadResponse:
    """Upload a batch of audio files; each one succeeds or fails on its own."""
    logger.info("upload_files called by user %s with %d file(s).", library.user_id, len(files))
    candidates = [await read_candidate(f, settings.max_upload_size_bytes) for f in files]
    outcomes = await library.upload(candidates)
    uploaded = sum(1 for o in outcomes if o.status == "success")
    return UploadResponse(outcomes=outcomes, uploaded=uploaded, failed=len(outcomes) - uploaded)


@router.patch("/files/{file_id}", response_model=AudioFileOut)
async def rename_file(
    file_id: str,
    body: RenameRequest,
    library: FileLibrary = Depends(get_library),
) -> AudioFileOut:
    record = await library.rename(file_id, body.file_name)
    return AudioFileOut.from_record(record)


@router.delete("/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(file_id: str, library: FileLibrary = Depends(get_library)) -> None:
    logger.info("Attempting to delete audio file %s for user %s", file_id, library.user_id)
    await library.delete(file_id)


@router.get("/files/{file_id}/url", response_model=SignedUrlResponse)
async def get_playback_url(file_id: str, library: FileLibrary = Depends(get_library)) -> SignedUrlResponse:
    record = await library.record_store.get(file_id, library.user_id)
    ttl = settings.SIGNED_URL_TTL_SECONDS
    url = await library.blob_store.issue_signed_url(record.file_path, ttl)
    return SignedUrlResponse(signed_url=url, expires_in=ttl)
