"""SQLAlchemy-backed record store for the ``audio_files`` table."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from audiobox.db.database import SessionLocal
from audiobox.errors import RecordNotFoundError, TransientBackendError
from audiobox.models.audio import AudioFile, AudioFileRecord, NewAudioFile

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqlRecordStore:
    """Every call opens its own session on a worker thread."""

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    async def _run(self, action: str, fn: Callable[[Session], T]) -> T:
        def _in_session() -> T:
            db = self._session_factory()
            try:
                return fn(db)
            except SQLAlchemyError:
                db.rollback()
                raise
            finally:
                db.close()

        try:
            return await asyncio.to_thread(_in_session)
        except SQLAlchemyError as exc:
            logger.error("Record store %s failed: %s", action, exc, exc_info=True)
            raise TransientBackendError(f"Database {action} failed: {exc}") from exc

    @staticmethod
    def _owned(db: Session, record_id: str, user_id: str) -> AudioFile:
        row = (
            db.query(AudioFile)
            .filter(AudioFile.id == record_id, AudioFile.user_id == user_id)
            .first()
        )
        if row is None:
            raise RecordNotFoundError(f"Audio file {record_id} not found")
        return row

    async def insert(self, record: NewAudioFile) -> AudioFileRecord:
        def _insert(db: Session) -> AudioFileRecord:
            row = AudioFile(**record.model_dump())
            db.add(row)
            db.commit()
            db.refresh(row)
            return AudioFileRecord.model_validate(row)

        stored = await self._run("insert", _insert)
        logger.info("Inserted audio file %s for user %s (%s)", stored.id, stored.user_id, stored.file_path)
        return stored

    async def select_where(self, user_id: str) -> List[AudioFileRecord]:
        def _select(db: Session) -> List[AudioFileRecord]:
            rows = (
                db.query(AudioFile)
                .filter(AudioFile.user_id == user_id)
                .order_by(AudioFile.created_at.desc())
                .all()
            )
            return [AudioFileRecord.model_validate(r) for r in rows]

        return await self._run("select", _select)

    async def get(self, record_id: str, user_id: str) -> AudioFileRecord:
        return await self._run(
            "select",
            lambda db: AudioFileRecord.model_validate(self._owned(db, record_id, user_id)),
        )

    async def update(self, record_id: str, user_id: str, file_name: str) -> AudioFileRecord:
        def _update(db: Session) -> AudioFileRecord:
            row = self._owned(db, record_id, user_id)
            row.file_name = file_name
            db.commit()
            db.refresh(row)
            return AudioFileRecord.model_validate(row)

        updated = await self._run("update", _update)
        logger.info("Renamed audio file %s to '%s'", record_id, file_name)
        return updated

    async def delete_by_id(self, record_id: str, user_id: str) -> None:
        def _delete(db: Session) -> None:
            row = self._owned(db, record_id, user_id)
            db.delete(row)
            db.commit()

        await self._run("delete", _delete)
        logger.info("Deleted audio file record %s", record_id)
