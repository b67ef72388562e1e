"""Narrow interfaces for every backend collaborator.

The upload pipeline, the playback transport and the file library only ever
talk to these protocols, which keeps them testable against in-memory fakes.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from pydantic import BaseModel

from audiobox.models.audio import AudioFileRecord, NewAudioFile


class BlobStore(Protocol):
    async def issue_signed_url(self, path: str, ttl_seconds: int) -> str:
        """Return a read-only URL for ``path`` valid for ``ttl_seconds``."""

    async def put(self, path: str, data: bytes, content_type: str, overwrite: bool = False) -> None:
        """Store ``data`` at ``path``; raise ``BlobExistsError`` when it exists and ``overwrite`` is false."""

    async def remove(self, path: str) -> None:
        ...


class RecordStore(Protocol):
    async def insert(self, record: NewAudioFile) -> AudioFileRecord:
        ...

    async def select_where(self, user_id: str) -> List[AudioFileRecord]:
        """All records owned by ``user_id``, newest first."""

    async def get(self, record_id: str, user_id: str) -> AudioFileRecord:
        ...

    async def update(self, record_id: str, user_id: str, file_name: str) -> AudioFileRecord:
        ...

    async def delete_by_id(self, record_id: str, user_id: str) -> None:
        ...


class UserInfo(BaseModel):
    id: str
    email: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


class AuthResult(BaseModel):
    user: UserInfo
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthProvider(Protocol):
    async def sign_up(self, email: str, password: str) -> AuthResult:
        ...

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        ...

    async def sign_in_with_oauth(self, provider: str, id_token: str) -> AuthResult:
        ...

    async def sign_out(self, access_token: str) -> None:
        ...

    async def request_password_reset(self, email: str, redirect_to: Optional[str] = None) -> None:
        ...

    async def update_password(self, access_token: str, new_password: str) -> UserInfo:
        ...

    async def get_user(self, access_token: str) -> Optional[UserInfo]:
        """Resolve a token to its user, ``None`` when invalid, expired or revoked."""
