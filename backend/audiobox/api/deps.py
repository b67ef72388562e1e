"""FastAPI dependencies wiring the collaborators into each request."""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import Depends, Header

from audiobox.errors import AuthenticationError
from audiobox.services.library import FileLibrary
from audiobox.services.session import AuthSession
from audiobox.services.upload_pipeline import UploadPipeline
from audiobox.stores.auth import SqlAuthProvider
from audiobox.stores.base import AuthProvider, BlobStore, RecordStore, UserInfo
from audiobox.stores.blobs import get_blob_store as _get_blob_store
from audiobox.stores.records import SqlRecordStore

_record_store: Optional[SqlRecordStore] = None
_auth_provider: Optional[SqlAuthProvider] = None


def get_blob_store() -> BlobStore:
    return _get_blob_store()


def get_record_store() -> RecordStore:
    global _record_store
    if _record_store is None:
        _record_store = SqlRecordStore()
    return _record_store


def get_auth_provider() -> AuthProvider:
    global _auth_provider
    if _auth_provider is None:
        _auth_provider = SqlAuthProvider()
    return _auth_provider


def bearer_token(authorization: Annotated[str | None, Header()] = None) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Malformed Authorization header")
    return token.strip()


def lenient_bearer_token(authorization: Annotated[str | None, Header()] = None) -> Optional[str]:
    """Like :func:`bearer_token` but a malformed header reads as no token."""
    try:
        return bearer_token(authorization)
    except AuthenticationError:
        return None


async def get_auth_session(
        token: Optional[str] = Depends(bearer_token),
        provider: AuthProvider = Depends(get_auth_provider),
) -> AuthSession:
    session = AuthSession(provider)
    return await session.initialize(token)


async def get_reported_session(
        token: Optional[str] = Depends(lenient_bearer_token),
        provider: AuthProvider = Depends(get_auth_provider),
) -> AuthSession:
    return await AuthSession(provider).initialize(token)


async def get_current_user(session: AuthSession = Depends(get_auth_session)) -> UserInfo:
    return session.require_user()


def get_library(
        user: UserInfo = Depends(get_current_user),
        records: RecordStore = Depends(get_record_store),
        blobs: BlobStore = Depends(get_blob_store),
) -> FileLibrary:
    return FileLibrary(user.id, records, blobs, pipeline=UploadPipeline(blobs, records))
