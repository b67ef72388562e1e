"""ORM models backing the built-in authentication provider."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from audiobox.db.base import Base
from audiobox.models.audio import _new_id, _utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(320), unique=True, index=True, nullable=False)
    # NULL for accounts that only ever signed in through OAuth.
    password_hash = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class RevokedToken(Base):
    """Deny-list of signed-out access tokens, keyed by their ``jti`` claim."""

    __tablename__ = "revoked_tokens"

    jti = Column(String(36), primary_key=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
