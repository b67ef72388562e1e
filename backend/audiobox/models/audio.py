"""ORM and Pydantic models for uploaded audio files."""

import uuid
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import Column, DateTime, Float, Integer, String

from audiobox.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class AudioFile(Base):
    """
    Represents one uploaded audio file owned by one user.

    ``file_path`` points at the blob in object storage and is created and
    destroyed together with it; ``file_name`` is only a display name.
    """
    __tablename__ = "audio_files"

    id = Column(String(36), primary_key=True, default=_new_id, comment="Store-generated identifier.")
    user_id = Column(String(36), index=True, nullable=False, comment="Owner of the file; every query is scoped to it.")
    file_name = Column(String(255), nullable=False, comment="User-visible name, may be renamed.")
    file_path = Column(String(1024), unique=True, nullable=False, comment="Storage path '<user_id>/<generated name>', immutable.")
    file_size = Column(Integer, nullable=False, comment="The size of the audio file in bytes.")
    duration = Column(Float, nullable=False, default=0.0, comment="Probed duration in seconds, 0 when unknown.")
    mime_type = Column(String(255), nullable=False, comment="The MIME type of the audio file (e.g., 'audio/mpeg').")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True, comment="Timestamp of when the file was uploaded.")


class NewAudioFile(BaseModel):
    """Values supplied by the upload pipeline; the store assigns the rest."""

    user_id: str
    file_name: str
    file_path: str
    file_size: int
    duration: float = 0.0
    mime_type: str


class AudioFileRecord(NewAudioFile):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # SQLite drops the offset on read; stored values are always UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
