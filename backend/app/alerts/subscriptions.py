"""
subscriptions.py — Push endpoint lifecycle per user.

    register(user, endpoint, keys, user_agent)  upsert keyed by endpoint
    deactivate(endpoint)                         soft-delete, idempotent
    active_endpoints_for(user)                   live endpoints only

A browser endpoint belongs to whichever user subscribed with it last;
re-registering an endpoint moves it to the new user and re-activates it.

Self-healing: the dispatcher calls deactivate() as soon as a delivery
comes back "gone", so a dead endpoint is absent from the very next
active_endpoints_for() call and never costs another round-trip.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Union

from backend.app.alerts.models import PushSubscription, SubscriptionKeys
from backend.app.core.errors import ValidationError
from backend.app.storage.base import Store

logger = logging.getLogger(__name__)


def _coerce_keys(keys: Union[SubscriptionKeys, Mapping[str, Any], None]) -> SubscriptionKeys:
    if isinstance(keys, SubscriptionKeys):
        parsed = keys
    elif isinstance(keys, Mapping):
        parsed = SubscriptionKeys(
            p256dh=str(keys.get("p256dh") or ""),
            auth=str(keys.get("auth") or ""),
        )
    else:
        raise ValidationError("Subscription keys are required", field="keys")

    errors = [
        {"field": f"keys.{name}", "message": "required"}
        for name in ("p256dh", "auth")
        if not getattr(parsed, name)
    ]
    if errors:
        raise ValidationError("Subscription keys are incomplete", errors=errors)
    return parsed


class SubscriptionRegistry:

    def __init__(self, store: Store) -> None:
        self.store = store

    async def register(
        self,
        user_id: str,
        endpoint: str,
        keys: Union[SubscriptionKeys, Mapping[str, Any]],
        user_agent: Optional[str] = None,
    ) -> PushSubscription:
        """Create or refresh the subscription for ``endpoint``."""
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")
        if not endpoint or not endpoint.strip():
            raise ValidationError("endpoint is required", field="endpoint")
        parsed_keys = _coerce_keys(keys)

        existing = await self.store.load_subscription(endpoint)
        if existing is not None and existing.user_id != user_id:
            logger.info(
                "Endpoint moving from user %s to %s", existing.user_id, user_id,
                extra={"user_id": user_id},
            )

        subscription = PushSubscription(
            user_id=user_id,
            endpoint=endpoint,
            keys=parsed_keys,
            user_agent=user_agent,
            is_active=True,
        )
        saved = await self.store.upsert_subscription(subscription)
        logger.info(
            "Push subscription %s for user %s",
            "refreshed" if existing else "registered", user_id,
            extra={"user_id": user_id},
        )
        return saved

    async def deactivate(self, endpoint: str) -> Optional[PushSubscription]:
        """Mark the endpoint inactive. Unknown endpoints are a no-op."""
        sub = await self.store.deactivate_subscription(endpoint)
        if sub is None:
            logger.debug("Deactivate: unknown endpoint %s", endpoint[:48])
        else:
            logger.info(
                "Push subscription deactivated for user %s", sub.user_id,
                extra={"user_id": sub.user_id},
            )
        return sub

    # Client-initiated unsubscribe is the same soft deactivation
    unsubscribe = deactivate

    async def active_endpoints_for(self, user_id: str) -> List[PushSubscription]:
        return await self.store.active_subscriptions(user_id)
