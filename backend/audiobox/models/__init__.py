# Namespace for Pydantic & ORM models.
from .audio import AudioFile, AudioFileRecord, NewAudioFile
from .user import RevokedToken, User

__all__ = ["AudioFile", "AudioFileRecord", "NewAudioFile", "RevokedToken", "User"]
