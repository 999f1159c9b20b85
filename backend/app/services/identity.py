"""
NoteMind Backend — Caller Identity
====================================

Authentication itself happens upstream: the auth gateway verifies the session
and forwards the user id in a trusted header (`settings.auth_user_header`).
This module only turns that into a CurrentUser, or None when absent.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str


class IdentityProvider(ABC):
    @abstractmethod
    async def get_current_user(self) -> Optional[CurrentUser]:
        """The authenticated caller, or None. May raise if the provider fails."""
        ...


class StaticIdentityProvider(IdentityProvider):
    """A fixed caller (or none); used by jobs and tests."""

    def __init__(self, user_id: Optional[str]):
        self._user = CurrentUser(id=user_id) if user_id else None

    async def get_current_user(self) -> Optional[CurrentUser]:
        return self._user


class HeaderIdentityProvider(IdentityProvider):
    def __init__(self, request: Request, header: Optional[str] = None):
        self._request = request
        self._header = header or settings.auth_user_header

    async def get_current_user(self) -> Optional[CurrentUser]:
        user_id = self._request.headers.get(self._header, "").strip()
        if not user_id:
            return None
        return CurrentUser(id=user_id)


def get_identity_provider(request: Request) -> IdentityProvider:
    """FastAPI dependency: identity of the caller of this request."""
    return HeaderIdentityProvider(request)
