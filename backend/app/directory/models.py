"""
models.py — Users and venues as the compliance core sees them.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional

from backend.app.spatial.geo_index import Coordinate

DEFAULT_VENUE_RADIUS_MILES = 5.0


class UserRole(str, Enum):
    MANAGER = "manager"
    STAFF = "staff"


@dataclass
class Venue:
    """
    A licensed venue with its geofence subscription radius.

    ``alert_radius_miles`` is None when the venue never chose one;
    directories fill in their configured default on read.
    """
    id: str
    name: str
    location: Coordinate
    alert_radius_miles: Optional[float] = None

    def with_default_radius(self, default_miles: float) -> "Venue":
        if self.alert_radius_miles is not None:
            return self
        return replace(self, alert_radius_miles=default_miles)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location.to_dict(),
            "alert_radius_miles": self.alert_radius_miles,
        }


@dataclass
class User:
    """
    A platform user.

    ``venue_id`` is the home venue. Managers need one to receive
    geofenced alerts; staff use it to appear on the venue's roster.
    """
    id: str
    role: UserRole
    venue_id: Optional[str] = None
    name: str = ""
    email: Optional[str] = None

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER

    @property
    def is_staff(self) -> bool:
        return self.role == UserRole.STAFF

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "venue_id": self.venue_id,
            "name": self.name,
            "email": self.email,
        }


@dataclass(frozen=True)
class ManagerLocation:
    """A manager joined with their venue's location and radius."""
    user_id: str
    venue_id: str
    venue_location: Coordinate
    venue_radius_miles: float
