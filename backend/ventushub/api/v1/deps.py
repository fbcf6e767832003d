"""Request dependencies.

Authentication happens upstream: the gateway verifies the session and forwards
the caller as `X-User-Id` (and `X-User-Role` for staff).
"""

from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from ventushub.db.session import async_session_factory
from ventushub.integrations.channels.factory import ChannelRegistry
from ventushub.services.audience import NullUserDirectory, UserDirectory

OPERATOR_ROLES = {"admin", "operator"}


@dataclass
class CurrentUser:
    id: str
    role: str | None = None

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES


async def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return CurrentUser(id=x_user_id, role=x_user_role)


async def require_operator(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_operator:
        raise HTTPException(status_code=403, detail="Operator role required")
    return user


def get_session_factory():
    """Session factory for handlers that open their own transactions."""
    return async_session_factory


@lru_cache
def _registry() -> ChannelRegistry:
    return ChannelRegistry()


def get_registry() -> ChannelRegistry:
    return _registry()


def get_user_directory() -> UserDirectory:
    return NullUserDirectory()
