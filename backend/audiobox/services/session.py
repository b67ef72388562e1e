"""Per-caller authentication session with an explicit lifecycle.

``UNINITIALIZED -> LOADING -> AUTHENTICATED | ANONYMOUS``.  Consumers receive
an :class:`AuthSession` by dependency injection instead of looking a user up
globally.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from audiobox.errors import AuthenticationError
from audiobox.stores.base import AuthProvider, UserInfo

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    LOADING = "LOADING"
    AUTHENTICATED = "AUTHENTICATED"
    ANONYMOUS = "ANONYMOUS"


class AuthSession:
    def __init__(self, provider: AuthProvider) -> None:
        self.provider = provider
        self.state = SessionState.UNINITIALIZED
        self.access_token: Optional[str] = None
        self._user: Optional[UserInfo] = None

    @property
    def user(self) -> Optional[UserInfo]:
        return self._user

    @property
    def loading(self) -> bool:
        return self.state in (SessionState.UNINITIALIZED, SessionState.LOADING)

    async def initialize(self, access_token: Optional[str]) -> "AuthSession":
        self.state = SessionState.LOADING
        self.access_token = access_token
        user = None
        if access_token:
            try:
                user = await self.provider.get_user(access_token)
            except Exception:
                self.state = SessionState.ANONYMOUS
                self.access_token = None
                raise
        self._user = user
        if user is None:
            self.access_token = None
            self.state = SessionState.ANONYMOUS
        else:
            self.state = SessionState.AUTHENTICATED
        logger.debug("Auth session resolved as %s", self.state.value)
        return self

    def require_user(self) -> UserInfo:
        if self.state != SessionState.AUTHENTICATED or self._user is None:
            raise AuthenticationError("Not authenticated")
        return self._user

    async def sign_out(self) -> None:
        if self.access_token:
            await self.provider.sign_out(self.access_token)
        self.access_token = None
        self._user = None
        self.state = SessionState.ANONYMOUS
