"""Authentication endpoints backed by the configured :class:`AuthProvider`."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from ..errors import AuthenticationError, ValidationError
from ..services.session import AuthSession
from ..stores.base import AuthProvider, AuthResult, UserInfo
from .deps import bearer_token, get_auth_provider, get_auth_session, get_reported_session

router = APIRouter()
logger = logging.getLogger(__name__)


class CredentialsRequest(BaseModel):
    email: str
    password: str


class OAuthRequest(BaseModel):
    id_token: str


class ResetPasswordRequest(BaseModel):
    email: str
    redirect_to: Optional[str] = None


class UpdatePasswordRequest(BaseModel):
    password: str
    confirm_password: Optional[str] = None


class SessionResponse(BaseModel):
    state: str
    user: Optional[UserInfo] = None


@router.post("/signup", response_model=AuthResult, status_code=status.HTTP_201_CREATED)
async def sign_up(body: CredentialsRequest, provider: AuthProvider = Depends(get_auth_provider)) -> AuthResult:
    return await provider.sign_up(body.email, body.password)


@router.post("/signin", response_model=AuthResult)
async def sign_in(body: CredentialsRequest, provider: AuthProvider = Depends(get_auth_provider)) -> AuthResult:
    return await provider.sign_in_with_password(body.email, body.password)


@router.post("/oauth/{provider_name}", response_model=AuthResult)
async def sign_in_oauth(
    provider_name: str,
    body: OAuthRequest,
    provider: AuthProvider = Depends(get_auth_provider),
) -> AuthResult:
    return await provider.sign_in_with_oauth(provider_name, body.id_token)


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(session: AuthSession = Depends(get_auth_session)) -> None:
    await session.sign_out()


@router.post("/reset-password", status_code=status.HTTP_202_ACCEPTED)
async def reset_password(
    body: ResetPasswordRequest,
    provider: AuthProvider = Depends(get_auth_provider),
) -> dict:
    await provider.request_password_reset(body.email, body.redirect_to)
    return {"message": "If the address is registered, a reset link has been sent."}


@router.post("/update-password", response_model=UserInfo)
async def update_password(
    body: UpdatePasswordRequest,
    token: Optional[str] = Depends(bearer_token),
    provider: AuthProvider = Depends(get_auth_provider),
) -> UserInfo:
    if body.confirm_password is not None and body.confirm_password != body.password:
        raise ValidationError("Passwords do not match")
    if not token:
        raise AuthenticationError("Auth session missing or expired")
    return await provider.update_password(token, body.password)


@router.get("/session", response_model=SessionResponse)
async def get_session(session: AuthSession = Depends(get_reported_session)) -> SessionResponse:
    return SessionResponse(state=session.state.value, user=session.user)
