from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from math import atan2, cos, radians, sin, sqrt
from typing import Protocol

EARTH_RADIUS_KM = 6371.0
DEFAULT_MAX_ACCURACY_M = 1000.0
NEARBY_MESSAGE_LIMIT_M = 10_000.0


class GeofencedTerritory(Protocol):
    id: str
    name: str
    geo_lat: float | None
    geo_lng: float | None
    geo_radius_m: float | None


@dataclass(frozen=True, slots=True)
class GeoPoint:
    lat: float
    lng: float


@dataclass(frozen=True, slots=True)
class GeoVerification:
    accuracy_ok: bool
    matched_territory_id: str | None = None
    matched_territory_name: str | None = None
    nearest_distance_m: float | None = None

    @property
    def matched(self) -> bool:
        return self.matched_territory_id is not None

    def to_flags(self) -> dict[str, object]:
        flags: dict[str, object] = {"accuracy_ok": self.accuracy_ok, "territory_matched": self.matched}
        if self.nearest_distance_m is not None:
            flags["nearest_distance_m"] = round(self.nearest_distance_m, 2)
        return flags


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    delta_lat = radians(lat2 - lat1)
    delta_lng = radians(lng2 - lng1)

    a = sin(delta_lat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(delta_lng / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return distance_km(lat1, lng1, lat2, lng2) * 1000.0


def _geofence_of(territory: GeofencedTerritory) -> tuple[float, float, float] | None:
    if territory.geo_lat is None or territory.geo_lng is None or territory.geo_radius_m is None:
        return None
    return territory.geo_lat, territory.geo_lng, territory.geo_radius_m


def verify_location(
    point: GeoPoint,
    accuracy_m: float,
    territories: Iterable[GeofencedTerritory],
    *,
    max_accuracy_m: float = DEFAULT_MAX_ACCURACY_M,
) -> GeoVerification:
    """Match a GPS fix against the caller's geofenced territories.

    Territories are checked in the order given and the first one whose radius
    contains the point wins, even if a later one is closer. A fix whose
    reported accuracy is worse than ``max_accuracy_m`` never matches.
    """
    if accuracy_m > max_accuracy_m:
        return GeoVerification(accuracy_ok=False)

    nearest: float | None = None
    for territory in territories:
        fence = _geofence_of(territory)
        if fence is None:
            continue
        center_lat, center_lng, radius_m = fence
        dist = distance_m(point.lat, point.lng, center_lat, center_lng)
        if nearest is None or dist < nearest:
            nearest = dist
        if dist <= radius_m:
            return GeoVerification(
                accuracy_ok=True,
                matched_territory_id=territory.id,
                matched_territory_name=territory.name,
                nearest_distance_m=dist,
            )

    return GeoVerification(accuracy_ok=True, nearest_distance_m=nearest)


def describe_verification(result: GeoVerification, accuracy_m: float) -> str:
    if not result.accuracy_ok:
        return f"GPS signal too weak (Accuracy: {round(accuracy_m)}m). Please move outdoors."
    if result.matched:
        return f"Verified: Inside {result.matched_territory_name}"
    if result.nearest_distance_m is not None and result.nearest_distance_m < NEARBY_MESSAGE_LIMIT_M:
        return f"Warning: You are {round(result.nearest_distance_m)}m away from closest territory."
    return "Warning: You are not inside any assigned geofenced territory."
