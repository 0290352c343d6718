"""
FastAPI routes: certification status, derived at read time.

    GET /api/v1/certifications/me          — acting user's certification
    GET /api/v1/certifications/{user_id}   — a staff member's (managers only)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import acting_manager, acting_user, get_services
from backend.app.core.errors import NotFoundError
from backend.app.directory.models import User
from backend.app.services import ComplianceServices

router = APIRouter(prefix="/api/v1/certifications", tags=["certifications"])


@router.get("/me", summary="My certification")
async def my_certification(
    user: User = Depends(acting_user),
    services: ComplianceServices = Depends(get_services),
):
    view = await services.engine.current_view(user.id)
    return view.to_dict()


@router.get("/{user_id}", summary="A staff member's certification")
async def user_certification(
    user_id: str,
    manager: User = Depends(acting_manager),
    services: ComplianceServices = Depends(get_services),
):
    if await services.directory.get_user(user_id) is None:
        raise NotFoundError("User", id=user_id)
    view = await services.engine.current_view(user_id)
    return view.to_dict()
