"""Built-in authentication provider.

Users live in the ``users`` table, passwords are bcrypt hashes and sessions
are HS256 JWTs.  Google sign-in verifies an ID token obtained by the browser.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import bcrypt
from authlib.jose import jwt
from authlib.jose.errors import JoseError
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from audiobox.config import settings
from audiobox.db.database import SessionLocal
from audiobox.errors import AuthenticationError, TransientBackendError, ValidationError
from audiobox.models.user import RevokedToken, User
from audiobox.stores.base import AuthResult, UserInfo

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
ACCESS = "access"
RECOVERY = "recovery"
SUPPORTED_OAUTH_PROVIDERS = ("google",)

ResetMailer = Callable[[str, str], None]


def hash_password(plain_text_password: str) -> str:
    hashed = bcrypt.hashpw(plain_text_password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_text_password: str, stored_hash: str) -> bool:
    return bcrypt.checkpw(
        plain_text_password.encode("utf-8"),
        stored_hash.encode("utf-8"),
    )


def log_reset_link(email: str, link: str) -> None:
    """Default mailer: e-mail delivery is an external concern, so just log."""
    logger.info("Password reset requested for %s: %s", email, link)


def _validate_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError("A valid email address is required")
    return email


def _user_info(user: User) -> UserInfo:
    return UserInfo(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
    )


class SqlAuthProvider:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        secret_key: Optional[str] = None,
        mailer: ResetMailer = log_reset_link,
        google_client_id: Optional[str] = None,
    ) -> None:
        self._session_factory = session_factory
        self._secret = secret_key or settings.JWT_SECRET_KEY
        self._mailer = mailer
        self._google_client_id = google_client_id or settings.GOOGLE_CLIENT_ID

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _create_token(self, user: User, purpose: str, ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user.id,
            "email": user.email,
            "purpose": purpose,
            "jti": str(uuid.uuid4()),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        }
        token = jwt.encode(header={"alg": "HS256"}, payload=payload, key=self._secret)
        return token.decode("utf-8") if isinstance(token, bytes) else token

    def _decode(self, token: str) -> Optional[Dict[str, Any]]:
        try:
            claims = jwt.decode(token, self._secret)
            claims.validate()
        except (JoseError, ValueError) as exc:
            logger.debug("Rejected token: %s", exc)
            return None
        return dict(claims)

    def _result(self, user: User) -> AuthResult:
        ttl = settings.ACCESS_TOKEN_TTL_SECONDS
        return AuthResult(user=_user_info(user), access_token=self._create_token(user, ACCESS, ttl), expires_in=ttl)

    # ------------------------------------------------------------------
    # DB plumbing
    # ------------------------------------------------------------------

    async def _run(self, fn: Callable[[Session], Any]) -> Any:
        def _in_session() -> Any:
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
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Auth store failure: %s", exc, exc_info=True)
            raise TransientBackendError(f"Authentication backend failed: {exc}") from exc

    @staticmethod
    def _is_revoked(db: Session, jti: Optional[str]) -> bool:
        return jti is not None and db.get(RevokedToken, jti) is not None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def sign_up(self, email: str, password: str) -> AuthResult:
        email = _normalize_email(email)
        _validate_password(password)
        password_hash = await asyncio.to_thread(hash_password, password)

        def _create(db: Session) -> User:
            if db.query(User).filter(User.email == email).first():
                raise AuthenticationError("User already registered", status_code=409)
            user = User(email=email, password_hash=password_hash)
            db.add(user)
            db.commit()
            db.refresh(user)
            return user

        try:
            user = await self._run(_create)
        except IntegrityError as exc:
            raise AuthenticationError("User already registered", status_code=409) from exc
        logger.info("Registered user %s", user.id)
        return self._result(user)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        email = _normalize_email(email)
        user = await self._run(lambda db: db.query(User).filter(User.email == email).first())
        if user is None or not user.password_hash:
            raise AuthenticationError("Invalid login credentials")
        if not await asyncio.to_thread(verify_password, password or "", user.password_hash):
            logger.warning("Failed password sign-in for %s", email)
            raise AuthenticationError("Invalid login credentials")
        logger.info("User %s signed in with password", user.id)
        return self._result(user)

    async def sign_in_with_oauth(self, provider: str, id_token: str) -> AuthResult:
        if provider not in SUPPORTED_OAUTH_PROVIDERS:
            raise ValidationError(f"Unsupported OAuth provider: {provider}")
        if not self._google_client_id:
            raise AuthenticationError("Google sign-in is not configured", status_code=503)
        try:
            id_info = await asyncio.to_thread(
                google_id_token.verify_oauth2_token,
                id_token,
                google_requests.Request(),
                self._google_client_id,
            )
        except ValueError as exc:
            raise AuthenticationError(f"Token verification failed: {exc}") from exc

        email = id_info.get("email")
        if not email:
            raise AuthenticationError("Invalid Google token: email missing")
        email = _normalize_email(email)

        def _upsert(db: Session) -> User:
            user = db.query(User).filter(User.email == email).first()
            if user is None:
                user = User(email=email)
                db.add(user)
            user.display_name = id_info.get("name") or user.display_name
            user.avatar_url = id_info.get("picture") or user.avatar_url
            db.commit()
            db.refresh(user)
            return user

        user = await self._run(_upsert)
        logger.info("User %s signed in with %s", user.id, provider)
        return self._result(user)

    async def sign_out(self, access_token: str) -> None:
        claims = self._decode(access_token)
        if claims is None:
            # Already unusable; nothing to revoke.
            return

        def _revoke(db: Session) -> None:
            if self._is_revoked(db, claims["jti"]):
                return
            db.add(RevokedToken(
                jti=claims["jti"],
                expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
            ))
            db.commit()

        await self._run(_revoke)
        logger.info("User %s signed out", claims.get("sub"))

    async def request_password_reset(self, email: str, redirect_to: Optional[str] = None) -> None:
        email = _normalize_email(email)
        user = await self._run(lambda db: db.query(User).filter(User.email == email).first())
        if user is None:
            # Do not disclose which addresses are registered.
            logger.info("Password reset requested for unknown address")
            return
        token = self._create_token(user, RECOVERY, settings.RECOVERY_TOKEN_TTL_SECONDS)
        base = redirect_to or f"{settings.PUBLIC_BASE_URL}/update-password"
        self._mailer(email, f"{base}#access_token={token}&type={RECOVERY}")

    async def update_password(self, access_token: str, new_password: str) -> UserInfo:
        _validate_password(new_password)
        claims = self._decode(access_token)
        if claims is None or claims.get("purpose") not in (ACCESS, RECOVERY):
            raise AuthenticationError("Auth session missing or expired")
        password_hash = await asyncio.to_thread(hash_password, new_password)

        def _update(db: Session) -> User:
            if self._is_revoked(db, claims.get("jti")):
                raise AuthenticationError("Auth session missing or expired")
            user = db.get(User, claims["sub"])
            if user is None:
                raise AuthenticationError("User not found")
            user.password_hash = password_hash
            if claims.get("purpose") == RECOVERY:
                # Recovery links are single use.
                db.add(RevokedToken(
                    jti=claims["jti"],
                    expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
                ))
            db.commit()
            db.refresh(user)
            return user

        user = await self._run(_update)
        logger.info("Password updated for user %s", user.id)
        return _user_info(user)

    async def get_user(self, access_token: str) -> Optional[UserInfo]:
        claims = self._decode(access_token)
        if claims is None or claims.get("purpose") != ACCESS:
            return None

        def _lookup(db: Session) -> Optional[UserInfo]:
            if self._is_revoked(db, claims.get("jti")):
                return None
            user = db.get(User, claims["sub"])
            return _user_info(user) if user is not None else None

        return await self._run(_lookup)
