import math
from typing import Iterable, List, Sequence, Tuple

from pydantic import BaseModel

from .errors import ConfigurationError
from .schemas import Coordinate

EARTH_RADIUS = {"km": 6371.0, "mi": 3959.0}

# Average speeds (km/h) used when no routing API is available.
TRAVEL_SPEEDS_KMH = {
    "driving": 50.0,
    "walking": 5.0,
    "cycling": 15.0,
    "transit": 30.0,
}


class BoundingBox(BaseModel):
    min_latitude: float
    max_latitude: float
    min_longitude: float
    max_longitude: float

    def contains(self, point: Coordinate) -> bool:
        return (
            self.min_latitude <= point.latitude <= self.max_latitude
            and self.min_longitude <= point.longitude <= self.max_longitude
        )


def _earth_radius(unit: str) -> float:
    try:
        return EARTH_RADIUS[unit]
    except KeyError:
        raise ConfigurationError(f"Unknown distance unit {unit!r}; expected 'km' or 'mi'")


def haversine_distance(a: Coordinate, b: Coordinate, unit: str = "km") -> float:
    R = _earth_radius(unit)
    if a == b:
        return 0.0

    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1)
        * math.cos(lat2)
        * math.sin(d_lon / 2) ** 2
    )
    # rounding can push h just outside [0, 1] for near-antipodal points
    h = min(1.0, max(0.0, h))

    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return R * c


def bounding_box(center: Coordinate, radius: float, unit: str = "km") -> BoundingBox:
    """
    Conservative lat/lon rectangle around a circle, used to reject candidates
    with an index-friendly range query before exact distances are computed.
    """
    if radius < 0:
        raise ConfigurationError(f"Radius must be non-negative, got {radius}")

    R = _earth_radius(unit)
    lat = math.radians(center.latitude)
    lon = math.radians(center.longitude)
    angular = radius / R

    min_lat = lat - angular
    max_lat = lat + angular

    # near the poles the longitude span degenerates to the full circle
    if min_lat <= -math.pi / 2 or max_lat >= math.pi / 2 or angular >= math.pi / 2:
        return BoundingBox(
            min_latitude=max(math.degrees(min_lat), -90.0),
            max_latitude=min(math.degrees(max_lat), 90.0),
            min_longitude=-180.0,
            max_longitude=180.0,
        )

    d_lon = math.asin(min(1.0, math.sin(angular) / math.cos(lat)))
    min_lon = math.degrees(lon - d_lon)
    max_lon = math.degrees(lon + d_lon)

    # a box crossing the antimeridian cannot be one longitude range; widen it
    if min_lon < -180.0 or max_lon > 180.0:
        min_lon, max_lon = -180.0, 180.0

    return BoundingBox(
        min_latitude=math.degrees(min_lat),
        max_latitude=math.degrees(max_lat),
        min_longitude=min_lon,
        max_longitude=max_lon,
    )


def is_within_radius(center: Coordinate, point: Coordinate, radius: float, unit: str = "km") -> bool:
    return haversine_distance(center, point, unit) <= radius


def centroid(points: Iterable[Coordinate]) -> Coordinate | None:
    x = y = z = 0.0
    count = 0
    for p in points:
        lat = math.radians(p.latitude)
        lon = math.radians(p.longitude)
        x += math.cos(lat) * math.cos(lon)
        y += math.cos(lat) * math.sin(lon)
        z += math.sin(lat)
        count += 1

    if count == 0:
        return None

    x /= count
    y /= count
    z /= count

    lon = math.atan2(y, x)
    lat = math.atan2(z, math.sqrt(x * x + y * y))
    return Coordinate(latitude=math.degrees(lat), longitude=math.degrees(lon))


def nearest_point(origin: Coordinate, candidates: Sequence[Coordinate]) -> Tuple[Coordinate, float] | None:
    nearest = None
    best = math.inf
    for c in candidates:
        d = haversine_distance(origin, c)
        if d < best:
            best = d
            nearest = c
    if nearest is None:
        return None
    return nearest, best


def points_within_radius(center: Coordinate, points: Sequence[Coordinate], radius: float, unit: str = "km") -> List[Tuple[Coordinate, float]]:
    inside = []
    for p in points:
        d = haversine_distance(center, p, unit)
        if d <= radius:
            inside.append((p, d))
    inside.sort(key=lambda x: x[1])
    return inside


def estimate_travel_time(a: Coordinate, b: Coordinate, mode: str = "driving") -> dict:
    distance = haversine_distance(a, b)
    speed = TRAVEL_SPEEDS_KMH.get(mode, TRAVEL_SPEEDS_KMH["driving"])
    return {
        "distance_km": round(distance, 2),
        "duration_minutes": round(distance / speed * 60),
        "mode": mode if mode in TRAVEL_SPEEDS_KMH else "driving",
        "estimated": True,
    }


def format_distance(distance: float, unit: str = "km") -> str:
    if unit == "km":
        if distance < 1:
            return f"{round(distance * 1000)} m"
        return f"{round(distance, 1)} km"
    if unit == "mi":
        return f"{round(distance, 1)} miles"
    raise ConfigurationError(f"Unknown distance unit {unit!r}; expected 'km' or 'mi'")


def optimize_route(start: Coordinate, waypoints: Sequence[Coordinate], end: Coordinate | None = None) -> dict:
    """
    Greedy nearest-neighbour ordering of waypoints starting from `start`.
    Not optimal, but good enough for a day's worth of visits.
    """
    if not waypoints:
        return {"route": [], "total_distance_km": 0.0, "waypoints_count": 0}

    remaining = list(waypoints)
    current = start
    route = []
    while remaining:
        idx, d = min(
            ((i, haversine_distance(current, p)) for i, p in enumerate(remaining)),
            key=lambda x: x[1],
        )
        current = remaining.pop(idx)
        route.append({"point": current, "distance_km": d})

    if end is not None:
        route.append({"point": end, "distance_km": haversine_distance(current, end)})

    return {
        "route": route,
        "total_distance_km": round(sum(leg["distance_km"] for leg in route), 2),
        "waypoints_count": len(waypoints),
    }
