"""The caller's file library: list, search, rename, delete, upload and play.

``FileLibrary`` owns one user's record set and mediates between the upload
pipeline (which adds records) and the playback transport (which consumes one
record at a time).
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

from audiobox.errors import AudioboxError, RecordNotFoundError, ValidationError
from audiobox.models.audio import AudioFileRecord
from audiobox.services.playback import PlaybackTransport
from audiobox.services.upload_pipeline import UploadCandidate, UploadOutcome, UploadPipeline
from audiobox.stores.base import BlobStore, RecordStore

logger = logging.getLogger(__name__)


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def format_duration(seconds: Optional[float]) -> str:
    if not seconds or math.isnan(seconds):
        return "--:--"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


def format_badge(mime_type: str) -> str:
    """``audio/mpeg`` -> ``MPEG``."""
    return mime_type.split("/")[-1].upper() if mime_type else ""


def normalize_rename(new_name: str, current_name: str) -> str:
    """Trim ``new_name``; keep the current extension when the new name has none."""
    final = (new_name or "").strip()
    if not final:
        raise ValidationError("File name cannot be empty")
    if "." not in final and "." in current_name:
        final = f"{final}.{current_name.rsplit('.', 1)[-1]}"
    return final


class FileLibrary:
    def __init__(
        self,
        user_id: str,
        record_store: RecordStore,
        blob_store: BlobStore,
        pipeline: Optional[UploadPipeline] = None,
        transport: Optional[PlaybackTransport] = None,
    ) -> None:
        self.user_id = user_id
        self.record_store = record_store
        self.blob_store = blob_store
        self.pipeline = pipeline or UploadPipeline(blob_store, record_store)
        self.transport = transport
        self.records: List[AudioFileRecord] = []
        self.last_error: Optional[str] = None
        self._refresh_generation = 0
        self.pipeline.add_listener(self._on_uploaded)

    async def _on_uploaded(self, record: AudioFileRecord) -> None:
        if record.user_id == self.user_id:
            await self.refresh()

    def _fail(self, prefix: str, exc: AudioboxError) -> None:
        self.last_error = f"{prefix}: {exc.detail}"
        logger.error("%s for user %s: %s", prefix, self.user_id, exc.detail)

    def _find(self, record_id: str) -> Optional[AudioFileRecord]:
        return next((r for r in self.records if r.id == record_id), None)

    async def refresh(self) -> List[AudioFileRecord]:
        """Reload the record list; a result older than the latest request is dropped."""
        self._refresh_generation += 1
        generation = self._refresh_generation
        try:
            rows = await self.record_store.select_where(self.user_id)
        except AudioboxError as exc:
            if generation == self._refresh_generation:
                self._fail("Failed to load file list", exc)
            raise
        if generation != self._refresh_generation:
            logger.debug("Discarding superseded file list for user %s", self.user_id)
            return self.records
        self.records = rows
        return self.records

    def filtered(self, search_term: Optional[str] = None) -> List[AudioFileRecord]:
        needle = (search_term or "").strip().lower()
        if not needle:
            return list(self.records)
        return [r for r in self.records if needle in r.file_name.lower()]

    async def _load_record(self, record_id: str) -> AudioFileRecord:
        return self._find(record_id) or await self.record_store.get(record_id, self.user_id)

    async def rename(self, record_id: str, new_name: str) -> AudioFileRecord:
        try:
            if not (new_name or "").strip():
                raise ValidationError("File name cannot be empty")
            current = await self._load_record(record_id)
            updated = await self.record_store.update(
                record_id, self.user_id, normalize_rename(new_name, current.file_name)
            )
        except AudioboxError as exc:
            self._fail("Rename failed", exc)
            raise
        await self.refresh()
        return updated

    async def delete(self, record_id: str) -> None:
        try:
            record = await self._load_record(record_id)
            await self.blob_store.remove(record.file_path)
            await self.record_store.delete_by_id(record_id, self.user_id)
        except AudioboxError as exc:
            self._fail("Delete failed", exc)
            raise
        if self.transport is not None and self.transport.record is not None and self.transport.record.id == record_id:
            self.transport.close()
        await self.refresh()

    async def upload(self, files: Sequence[UploadCandidate]) -> List[UploadOutcome]:
        outcomes = await self.pipeline.upload_many(files, self.user_id)
        failures = [o for o in outcomes if o.status == "error"]
        self.last_error = failures[-1].message if failures else None
        return outcomes

    async def play(self, record_id: str):
        if self.transport is None:
            raise AudioboxError("No playback transport attached", status_code=409)
        record = self._find(record_id)
        if record is None:
            try:
                record = await self.record_store.get(record_id, self.user_id)
            except RecordNotFoundError as exc:
                self._fail("Playback failed", exc)
                raise
        try:
            return await self.transport.load(record)
        except AudioboxError as exc:
            self._fail("Playback failed", exc)
            raise
