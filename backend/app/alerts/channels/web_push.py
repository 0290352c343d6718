"""
web_push.py — Web Push delivery channel.

Delivery mechanism:
    • Web Push Protocol (RFC 8030) with VAPID authentication (RFC 8292)
    • Payload: JSON NotificationPayload (title, body, severityTag, data)
    • Push service response code decides the DeliveryOutcome

Transports:
    WebPushTransport        — real delivery through pywebpush
    SimulatedPushTransport  — logs and reports success; used in development
                              when no VAPID keys are configured

pywebpush is blocking (requests under the hood), so each send runs in a
worker thread. The caller bounds every send with its own timeout.

═══════════════════════════════════════════════════════════════════════════
STATUS CODE MAPPING
═══════════════════════════════════════════════════════════════════════════

    Push service reply          Outcome
    ──────────────────          ─────────────────
    201 / 2xx                   DELIVERED
    404 Not Found               GONE   (subscription expired/unknown)
    410 Gone                    GONE   (user revoked permission)
    413 / 429 / 5xx / other     TRANSIENT_FAILURE
    connection error, timeout   TRANSIENT_FAILURE
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Tuple

import requests
from pywebpush import WebPushException, webpush

from backend.app.alerts.models import DeliveryOutcome, NotificationPayload, PushSubscription
from backend.app.core.config import Settings
from backend.app.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = frozenset({404, 410})


@dataclass(frozen=True)
class VapidConfig:
    """VAPID identity used to sign push requests."""
    public_key: str
    private_key: str
    mailto: str

    @property
    def claims(self) -> dict:
        return {"sub": self.mailto}


class PushTransport(abc.ABC):
    """Sends one payload to one subscription."""

    @abc.abstractmethod
    async def send(
        self, subscription: PushSubscription, payload: NotificationPayload,
    ) -> DeliveryOutcome:
        ...

    @property
    def public_key(self) -> Optional[str]:
        return None


class WebPushTransport(PushTransport):

    def __init__(
        self,
        vapid: VapidConfig,
        *,
        ttl_seconds: int = 60 * 60 * 24,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not vapid.private_key or not vapid.public_key:
            raise ExternalServiceError("web-push", "VAPID keys are not configured")
        self.vapid = vapid
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds

    @property
    def public_key(self) -> Optional[str]:
        return self.vapid.public_key

    def _send_blocking(self, subscription: PushSubscription, data: str) -> DeliveryOutcome:
        try:
            webpush(
                subscription_info=subscription.to_subscription_info(),
                data=data,
                vapid_private_key=self.vapid.private_key,
                # pywebpush adds aud/exp to the dict it is given
                vapid_claims=dict(self.vapid.claims),
                ttl=self.ttl_seconds,
                timeout=self.timeout_seconds,
            )
        except WebPushException as exc:
            status = exc.response.status_code if exc.response is not None else None
            if status in GONE_STATUS_CODES:
                logger.info(
                    "[WEB_PUSH] Endpoint gone (%s) for user %s",
                    status, subscription.user_id,
                )
                return DeliveryOutcome.GONE
            logger.warning(
                "[WEB_PUSH] Push service rejected message for user %s: %s (status=%s)",
                subscription.user_id, exc, status,
            )
            return DeliveryOutcome.TRANSIENT_FAILURE
        except requests.RequestException as exc:
            logger.warning(
                "[WEB_PUSH] Push service unreachable for user %s: %s",
                subscription.user_id, exc,
            )
            return DeliveryOutcome.TRANSIENT_FAILURE

        return DeliveryOutcome.DELIVERED

    async def send(
        self, subscription: PushSubscription, payload: NotificationPayload,
    ) -> DeliveryOutcome:
        return await asyncio.to_thread(
            self._send_blocking, subscription, payload.to_push_json(),
        )


class SimulatedPushTransport(PushTransport):
    """
    Development transport: logs each notification and reports delivery.

    ``sent`` keeps the most recent ``history_size`` (endpoint, payload)
    pairs for inspection; older ones are discarded.
    """

    def __init__(self, public_key: Optional[str] = None, history_size: int = 500) -> None:
        self._public_key = public_key
        self.sent: Deque[Tuple[str, NotificationPayload]] = deque(maxlen=history_size)

    @property
    def public_key(self) -> Optional[str]:
        return self._public_key

    async def send(
        self, subscription: PushSubscription, payload: NotificationPayload,
    ) -> DeliveryOutcome:
        logger.info(
            "[WEB_PUSH:simulated] %s → user %s: %s",
            payload.data.alert_id, subscription.user_id, payload.title,
        )
        self.sent.append((subscription.endpoint, payload))
        return DeliveryOutcome.DELIVERED


def build_transport(settings: Settings) -> PushTransport:
    """Real transport when VAPID keys are configured, simulation otherwise."""
    if settings.push_enabled:
        return WebPushTransport(
            VapidConfig(
                public_key=settings.VAPID_PUBLIC_KEY,
                private_key=settings.VAPID_PRIVATE_KEY,
                mailto=settings.VAPID_MAILTO,
            ),
            ttl_seconds=settings.PUSH_TTL_SECONDS,
            timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        )
    if settings.is_production:
        raise ExternalServiceError("web-push", "VAPID keys are required in production")
    logger.warning("VAPID keys not configured — push notifications are simulated")
    return SimulatedPushTransport(public_key=settings.VAPID_PUBLIC_KEY)
