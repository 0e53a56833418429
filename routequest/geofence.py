from math import asin, cos, radians, sin, sqrt

from .errors import ValidationError

EARTH_RADIUS_M = 6371000.0
DEFAULT_TOLERANCE_M = 10.0


def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return great-circle distance in metres using the haversine formula."""
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)
    h = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng / 2) ** 2
    # clamp: rounding can push h a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(1.0, h)))


def is_within_geofence(
    player_lat: float,
    player_lng: float,
    checkpoint_lat: float,
    checkpoint_lng: float,
    radius_m: float,
    tolerance_m: float = DEFAULT_TOLERANCE_M,
) -> bool:
    distance = distance_m(player_lat, player_lng, checkpoint_lat, checkpoint_lng)
    return distance <= radius_m + tolerance_m


def validate_coordinates(latitude, longitude) -> None:
    """Raise ValidationError unless the pair is a finite lat/lng in range."""
    for name, value, bound in (("latitude", latitude, 90.0), ("longitude", longitude, 180.0)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{name} must be a number", payload={"field": name})
        if value != value or not -bound <= value <= bound:
            raise ValidationError(f"{name} must be between -{bound:g} and {bound:g}", payload={"field": name})
