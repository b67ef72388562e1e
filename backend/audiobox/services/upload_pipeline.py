"""Upload pipeline: validate, probe, store the blob, insert the record.

A single :meth:`UploadPipeline.upload` call either leaves behind one blob plus
one ``audio_files`` row that points at it, or nothing at all.  The only local
recovery is the compensating blob delete when the row insert fails.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
import string
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Union

import ffmpeg
from pydantic import BaseModel

from audiobox.config import settings
from audiobox.errors import (
    AudioboxError,
    PartialWriteError,
    TransientBackendError,
    ValidationError,
)
from audiobox.models.audio import AudioFileRecord, NewAudioFile
from audiobox.stores.base import BlobStore, RecordStore

logger = logging.getLogger(__name__)

ALLOWED_TYPES = (
    "audio/mp3",
    "audio/mpeg",
    "audio/wav",
    "audio/aac",
    "audio/flac",
    "audio/ogg",
)
SUPPORTED_FORMATS_LABEL = "MP3, WAV, AAC, FLAC, OGG"

# Fallback extensions for names that carry none.
MIME_EXTENSIONS = {
    "audio/mp3": "mp3",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/aac": "aac",
    "audio/flac": "flac",
    "audio/ogg": "ogg",
}

PROGRESS_STORED = 50
PROGRESS_DONE = 100

_BASE36 = string.digits + string.ascii_lowercase

ProgressCallback = Callable[[int], None]
UploadListener = Callable[[AudioFileRecord], Union[None, Awaitable[None]]]


@dataclass
class UploadCandidate:
    """A file picked or dropped by the user."""

    name: str
    mime_type: str
    data: bytes = field(repr=False)
    size: Optional[int] = None

    def __post_init__(self) -> None:
        if self.size is None:
            self.size = len(self.data)


class UploadOutcome(BaseModel):
    file_name: str
    status: str  # "success" | "error"
    message: str
    progress: int = 0
    record: Optional[AudioFileRecord] = None
    orphaned_path: Optional[str] = None


def validate_candidate(file: UploadCandidate, max_bytes: Optional[int] = None) -> None:
    """Raise :class:`ValidationError` for a disallowed type or an oversized file."""
    limit = settings.max_upload_size_bytes if max_bytes is None else max_bytes
    if file.mime_type not in ALLOWED_TYPES:
        raise ValidationError(
            f"Unsupported file format: {file.mime_type or 'unknown'}. Supported formats: {SUPPORTED_FORMATS_LABEL}"
        )
    if file.size > limit:
        raise ValidationError(
            f"File too large: {file.size / 1024 / 1024:.2f}MB. Maximum allowed is {limit // (1024 * 1024)}MB"
        )


def file_extension(name: str, mime_type: str) -> str:
    suffix = Path(name).suffix.lstrip(".").lower()
    return suffix or MIME_EXTENSIONS.get(mime_type, "bin")


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_storage_path(owner_id: str, name: str, mime_type: str) -> str:
    """``<owner_id>/<time_ns>-<random>.<ext>``; collisions are negligible per owner."""
    stamp = time.time_ns()
    suffix = _base36(secrets.randbits(64))
    return f"{owner_id}/{stamp}-{suffix}.{file_extension(name, mime_type)}"


def _probe_file(data: bytes, suffix: str, timeout: float) -> float:
    with tempfile.NamedTemporaryFile(suffix=f".{suffix}") as tmp:
        tmp.write(data)
        tmp.flush()
        info = ffmpeg.probe(tmp.name, cmd=settings.FFPROBE_PATH, timeout=timeout)
    duration = info.get("format", {}).get("duration")
    if duration is None:
        durations = [float(s["duration"]) for s in info.get("streams", []) if s.get("duration")]
        duration = max(durations) if durations else 0.0
    return max(float(duration), 0.0)


async def probe_duration(file: UploadCandidate, timeout: Optional[float] = None) -> float:
    """Best-effort local duration probe; ``0.0`` on any failure or timeout."""
    limit = settings.PROBE_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_probe_file, file.data, file_extension(file.name, file.mime_type), limit),
            timeout=limit,
        )
    except asyncio.TimeoutError:
        logger.warning("Duration probe timed out after %ss for '%s'", limit, file.name)
    except ffmpeg.Error as exc:
        details = exc.stderr.decode("utf8", "replace") if exc.stderr else "no stderr"
        logger.warning("ffprobe could not read '%s': %s", file.name, details)
    except Exception as exc:
        logger.warning("Duration probe failed for '%s': %s", file.name, exc)
    return 0.0


class UploadPipeline:
    def __init__(
        self,
        blob_store: BlobStore,
        record_store: RecordStore,
        prober: Callable[[UploadCandidate], Awaitable[float]] = probe_duration,
        max_bytes: Optional[int] = None,
    ) -> None:
        self.blob_store = blob_store
        self.record_store = record_store
        self.prober = prober
        self.max_bytes = max_bytes
        self.history: List[UploadOutcome] = []
        self._listeners: List[UploadListener] = []

    def add_listener(self, listener: UploadListener) -> None:
        """Register a callback run with every successfully stored record."""
        self._listeners.append(listener)

    async def _notify(self, record: AudioFileRecord) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(record)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Upload listener failed for record %s", record.id)

    async def upload(
        self,
        file: UploadCandidate,
        owner_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AudioFileRecord:
        """Store ``file`` for ``owner_id`` and return the inserted record."""

        def report(percent: int) -> None:
            if on_progress is not None:
                on_progress(percent)

        validate_candidate(file, self.max_bytes)
        report(0)

        path = generate_storage_path(owner_id, file.name, file.mime_type)
        duration = await self.prober(file)
        logger.info("Uploading '%s' (%d bytes, %.2fs) to %s", file.name, file.size, duration, path)

        try:
            await self.blob_store.put(path, file.data, file.mime_type, overwrite=False)
        except TransientBackendError:
            raise
        except Exception as exc:
            logger.error("Blob write failed for %s: %s", path, exc, exc_info=True)
            raise TransientBackendError(f"Storage write failed: {exc}") from exc
        report(PROGRESS_STORED)

        try:
            record = await self.record_store.insert(NewAudioFile(
                user_id=owner_id,
                file_name=file.name,
                file_path=path,
                file_size=file.size,
                duration=duration,
                mime_type=file.mime_type,
            ))
        except Exception as insert_error:
            logger.error("Metadata insert failed for %s, removing blob: %s", path, insert_error)
            orphaned = None
            try:
                await self.blob_store.remove(path)
            except Exception as cleanup_error:
                orphaned = path
                logger.error("Compensating delete failed, blob %s is orphaned: %s", path, cleanup_error)
            detail = insert_error.detail if isinstance(insert_error, AudioboxError) else str(insert_error)
            raise PartialWriteError(detail, path=path, orphaned_path=orphaned) from insert_error

        report(PROGRESS_DONE)
        logger.info("Upload of '%s' complete as record %s", file.name, record.id)
        await self._notify(record)
        return record

    async def _upload_one(self, file: UploadCandidate, owner_id: str) -> UploadOutcome:
        progress = 0

        def track(percent: int) -> None:
            nonlocal progress
            progress = percent

        try:
            record = await self.upload(file, owner_id, on_progress=track)
        except AudioboxError as exc:
            outcome = UploadOutcome(
                file_name=file.name,
                status="error",
                message=f"Upload failed: {exc.detail}",
                progress=progress,
                orphaned_path=getattr(exc, "orphaned_path", None),
            )
        except Exception as exc:
            logger.exception("Unexpected upload failure for '%s'", file.name)
            outcome = UploadOutcome(
                file_name=file.name, status="error", message=f"Upload failed: {exc}", progress=progress
            )
        else:
            outcome = UploadOutcome(
                file_name=file.name,
                status="success",
                message=f"{file.name} uploaded successfully!",
                progress=progress,
                record=record,
            )
        self.history.append(outcome)
        return outcome

    async def upload_many(self, files: Sequence[UploadCandidate], owner_id: str) -> List[UploadOutcome]:
        """Run one independent pipeline per file; one failure never affects the others."""
        return list(await asyncio.gather(*(self._upload_one(f, owner_id) for f in files)))
