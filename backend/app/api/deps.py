"""
Shared FastAPI dependencies: the service container and the acting user.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request

from backend.app.core.errors import AuthenticationRequired, NotFoundError, PermissionDenied
from backend.app.directory.models import User
from backend.app.services import ComplianceServices


def get_services(request: Request) -> ComplianceServices:
    return request.app.state.services


def acting_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationRequired()
    return x_user_id.strip()


async def acting_user(
    user_id: str = Depends(acting_user_id),
    services: ComplianceServices = Depends(get_services),
) -> User:
    user = await services.directory.get_user(user_id)
    if user is None:
        raise NotFoundError("User", id=user_id)
    return user


async def acting_manager(user: User = Depends(acting_user)) -> User:
    if not user.is_manager:
        raise PermissionDenied(user_id=user.id)
    return user
