"""
geo_index.py — Great-circle distance and geofence range queries.

Provides:
    - Haversine distance between two (lat, lon) points, in **miles**
    - Range query: which candidates fall inside an incident's catch area
    - Bounding-box pre-filter for performance at scale

Coordinates are in decimal degrees (WGS84).

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

    R = 3959 miles (mean Earth radius)

Floating-point error can push ``a`` marginally outside [0, 1] for
identical or antipodal points, which would make one of the square roots
raise. ``a`` is clamped before it reaches atan2.

Catch area
==========
A candidate (venue) is in range of an alert when

    distance(center, venue) ≤ alert_radius + venue_radius

i.e. the alert's blast radius and the venue's own subscription radius
are summed. A venue that configures a larger radius extends its catch
area.

Malformed geodata
=================
Venue coordinates come from geocoding and may be missing, NaN or out of
range. Such candidates are excluded from results and logged; they never
abort the query.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Hashable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_MILES: float = 3959.0

_BOX_PAD_DEGREES: float = 1e-9


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees. Not validated on creation."""
    latitude: float
    longitude: float

    @property
    def is_valid(self) -> bool:
        return is_valid_coordinate(self.latitude, self.longitude)

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class RangeCandidate:
    """A target of a range query: an id, a location and its own radius."""
    id: Hashable
    location: Optional[Coordinate]
    own_radius_miles: float = 0.0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_valid_coordinate(latitude: Any, longitude: Any) -> bool:
    """True for finite numbers within [-90, 90] / [-180, 180]."""
    if not (_is_number(latitude) and _is_number(longitude)):
        return False
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


def _is_valid_radius(radius: Any) -> bool:
    return _is_number(radius) and math.isfinite(radius) and radius >= 0.0


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def distance(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance between two points in miles.

    Examples
    --------
    >>> round(distance(Coordinate(40.0, -74.0), Coordinate(40.01, -74.0)), 2)
    0.69

    >>> distance(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )
    a = min(1.0, max(0.0, a))

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_MILES * c


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before Haversine)
# ---------------------------------------------------------------------------

def _bounding_box(
    center: Coordinate, radius_miles: float,
) -> Tuple[float, float, Optional[float], Optional[float]]:
    """
    Lat/lon box that fully contains the circle (center, radius).

    Returns (min_lat, max_lat, min_lon, max_lon). The longitude bounds are
    None when the circle wraps the antimeridian or covers a pole, in which
    case only the latitude band is usable for rejection.
    """
    angular = radius_miles / EARTH_RADIUS_MILES  # radians

    # Padded so points exactly on the circle survive float rounding
    min_lat = center.latitude - math.degrees(angular) - _BOX_PAD_DEGREES
    max_lat = center.latitude + math.degrees(angular) + _BOX_PAD_DEGREES
    if min_lat <= -90.0 or max_lat >= 90.0:
        return max(min_lat, -90.0), min(max_lat, 90.0), None, None

    # Widest longitude of a spherical cap: sin(dlon) = sin(angular) / cos(lat)
    cos_lat = math.cos(center.lat_rad)
    if cos_lat <= 1e-10:
        return min_lat, max_lat, None, None
    ratio = math.sin(angular) / cos_lat
    if ratio >= 1.0:
        return min_lat, max_lat, None, None
    delta_lon = math.degrees(math.asin(ratio)) + _BOX_PAD_DEGREES

    min_lon = center.longitude - delta_lon
    max_lon = center.longitude + delta_lon
    if min_lon < -180.0 or max_lon > 180.0:
        return min_lat, max_lat, None, None

    return min_lat, max_lat, min_lon, max_lon


# ---------------------------------------------------------------------------
# Range query
# ---------------------------------------------------------------------------

def within_range(
    center: Coordinate,
    radius_miles: float,
    candidates: Sequence[RangeCandidate],
) -> List[Hashable]:
    """
    Ids of every candidate within ``radius_miles + own_radius_miles`` of
    ``center``, in input order.

    Candidates with malformed coordinates or radii are skipped. An invalid
    center or radius yields an empty result.

    Examples
    --------
    >>> incident = Coordinate(40.0, -74.0)
    >>> near = RangeCandidate("mgr-1", Coordinate(40.01, -74.0), 5.0)
    >>> far = RangeCandidate("mgr-2", Coordinate(41.0, -74.0), 5.0)
    >>> within_range(incident, 5.0, [near, far])
    ['mgr-1']
    """
    if not center.is_valid or not _is_valid_radius(radius_miles):
        logger.warning(
            "Range query skipped: invalid center %s or radius %r",
            center, radius_miles,
        )
        return []

    valid: List[RangeCandidate] = []
    for candidate in candidates:
        if (
            candidate.location is None
            or not candidate.location.is_valid
            or not _is_valid_radius(candidate.own_radius_miles)
        ):
            logger.warning(
                "Excluding candidate %s: malformed location/radius (%s, %r)",
                candidate.id, candidate.location, candidate.own_radius_miles,
            )
            continue
        valid.append(candidate)

    if not valid:
        return []

    # One box sized for the widest catch area rejects most candidates cheaply
    widest = radius_miles + max(c.own_radius_miles for c in valid)
    min_lat, max_lat, min_lon, max_lon = _bounding_box(center, widest)

    matched: List[Hashable] = []
    for candidate in valid:
        loc = candidate.location
        if not (min_lat <= loc.latitude <= max_lat):
            continue
        if min_lon is not None and not (min_lon <= loc.longitude <= max_lon):
            continue

        if distance(center, loc) <= radius_miles + candidate.own_radius_miles:
            matched.append(candidate.id)

    logger.debug(
        "Range query: %d/%d candidates within %.1f mi (+own radius) of (%.4f, %.4f)",
        len(matched), len(candidates), radius_miles,
        center.latitude, center.longitude,
    )
    return matched
