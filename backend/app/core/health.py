"""
Deep health probe for the compliance service.

    component   healthy                      degraded            unhealthy
    ─────────   ──────────────────────────   ─────────────────   ───────────────
    store       training catalogue readable  -                   read raised
    web_push    VAPID transport configured   simulated delivery  -

The overall status is the worst component status. ``GET /health`` answers
503 when it is unhealthy; ``/health/live`` never touches a component.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from backend.app.alerts.channels.web_push import WebPushTransport

if TYPE_CHECKING:
    from backend.app.services import ComplianceServices

logger = logging.getLogger(__name__)

_PROCESS_STARTED = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"    # alerts simulated, everything else works
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    latency_ms: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.details:
            out["details"] = dict(self.details)
        return out


@dataclass
class HealthReport:
    version: str
    environment: str
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> HealthStatus:
        if not self.components:
            return HealthStatus.HEALTHY
        return max((c.status for c in self.components), key=_SEVERITY.__getitem__)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "checked_at": self.checked_at.isoformat(),
            "uptime_seconds": round(time.monotonic() - _PROCESS_STARTED, 1),
            "components": [c.to_dict() for c in self.components],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Component checks
# ═══════════════════════════════════════════════════════════════════════════

async def check_store(services: "ComplianceServices") -> ComponentHealth:
    """One cheap read through the configured Store."""
    comp = ComponentHealth(name="store", details={"backend": type(services.store).__name__})
    began = time.monotonic()
    try:
        modules = await services.store.list_modules()
    except Exception as exc:
        logger.error("Store health check failed: %s", exc)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = f"{type(exc).__name__}: {exc}"
    else:
        comp.message = f"{len(modules)} training module(s) readable"
    comp.latency_ms = (time.monotonic() - began) * 1000
    return comp


async def check_push(services: "ComplianceServices") -> ComponentHealth:
    transport = services.transport
    comp = ComponentHealth(name="web_push", details={"transport": type(transport).__name__})
    if isinstance(transport, WebPushTransport):
        comp.message = "VAPID delivery configured"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Push notifications are simulated"
    return comp


async def run_health_check(services: "ComplianceServices") -> HealthReport:
    return HealthReport(
        version=services.settings.APP_VERSION,
        environment=services.settings.ENVIRONMENT,
        components=[await check_store(services), await check_push(services)],
    )
