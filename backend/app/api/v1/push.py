"""
FastAPI routes: Web Push subscription management.

    GET  /api/v1/push/vapid-public-key  — key for PushManager.subscribe()
    POST /api/v1/push/subscribe         — register / refresh an endpoint
    POST /api/v1/push/unsubscribe       — deactivate an endpoint
    POST /api/v1/push/test              — send a test notification to myself
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header

from backend.app.api.deps import acting_user, acting_user_id, get_services
from backend.app.api.schemas import SubscribeRequest, UnsubscribeRequest
from backend.app.core.errors import ExternalServiceError, PermissionDenied
from backend.app.directory.models import User
from backend.app.services import ComplianceServices

router = APIRouter(prefix="/api/v1/push", tags=["push"])


@router.get("/vapid-public-key", summary="VAPID application server key")
async def vapid_public_key(services: ComplianceServices = Depends(get_services)):
    key = services.transport.public_key
    if not key:
        raise ExternalServiceError("web-push", "VAPID public key is not configured")
    return {"public_key": key}


@router.post("/subscribe", status_code=201, summary="Register a push endpoint")
async def subscribe(
    request: SubscribeRequest,
    user: User = Depends(acting_user),
    user_agent: Optional[str] = Header(None),
    services: ComplianceServices = Depends(get_services),
):
    subscription = await services.registry.register(
        user.id,
        request.subscription.endpoint,
        request.subscription.keys.model_dump(),
        user_agent=user_agent,
    )
    return subscription.to_dict()


@router.post("/unsubscribe", summary="Deactivate a push endpoint")
async def unsubscribe(
    request: UnsubscribeRequest,
    user_id: str = Depends(acting_user_id),
    services: ComplianceServices = Depends(get_services),
):
    existing = await services.store.load_subscription(request.endpoint)
    if existing is not None and existing.user_id != user_id:
        raise PermissionDenied("Endpoint belongs to another user")
    subscription = await services.registry.unsubscribe(request.endpoint)
    return {"endpoint": request.endpoint, "deactivated": subscription is not None}


@router.post("/test", summary="Send a test notification")
async def send_test(
    user: User = Depends(acting_user),
    services: ComplianceServices = Depends(get_services),
):
    result = await services.dispatcher.send_test_notification(user.id)
    return result.to_dict()
