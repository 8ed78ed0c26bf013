"""Great-circle distance and radius zoning for GPS check-ins."""

import math
from dataclasses import dataclass

from .config import settings
from .errors import InvalidCoordinate
from .models import ZoneStatus

EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True)
class ZoneClassification:
    distance_meters: float
    zone_status: ZoneStatus
    out_of_range: bool


def to_coordinate(value, name: str = "coordinate") -> float:
    """Coerce a latitude/longitude value to a finite float.

    Numeric strings are accepted, as mobile clients often send them that way.
    """
    if isinstance(value, bool):
        raise InvalidCoordinate(f"{name} must be numeric, got a boolean")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidCoordinate(f"{name} must be numeric, got {value!r}") from exc
    if not math.isfinite(number):
        raise InvalidCoordinate(f"{name} must be finite, got {value!r}")
    return number


def distance_meters(lat1, lon1, lat2, lon2) -> float:
    """Haversine distance in meters between two points given in decimal degrees.

    Coordinate ranges are not checked; only non-numeric input is rejected.
    """
    lat1 = to_coordinate(lat1, "lat1")
    lon1 = to_coordinate(lon1, "lon1")
    lat2 = to_coordinate(lat2, "lat2")
    lon2 = to_coordinate(lon2, "lon2")

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # Rounding can push a hair above 1 for antipodal points.
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def classify(distance: float, configured_radius: float | None = None) -> ZoneClassification:
    if configured_radius is None:
        configured_radius = settings.default_gps_radius_m
    if configured_radius <= 0:
        raise ValueError(f"configured radius must be positive, got {configured_radius!r}")

    if distance <= configured_radius:
        return ZoneClassification(distance, ZoneStatus.GREEN, False)
    if distance <= 2 * configured_radius:
        return ZoneClassification(distance, ZoneStatus.ORANGE, True)
    return ZoneClassification(distance, ZoneStatus.RED, True)
