from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371
RESTAURANT_TABLE = "Restaurants"
DISTANCE_RPC = "restaurants_with_distance"

RESTAURANT_COLUMNS = (
    "id, created_at, name, logo_url, website_url, reviews_count, "
    "average_rating, address, maps_url, latitude, longitude"
)


def _parse_coordinate(value: Any, limit: float) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or not -limit <= number <= limit:
        return None
    return number


def resolve_reference_point(lat: Any, lon: Any) -> tuple[float, float] | None:
    """Return a usable ``(lat, lon)`` pair, or ``None`` when either half is unusable.

    Unusable input is logged and otherwise ignored; it never raises.
    """
    if lat is None and lon is None:
        return None

    parsed_lat = _parse_coordinate(lat, 90.0)
    parsed_lon = _parse_coordinate(lon, 180.0)
    if parsed_lat is None or parsed_lon is None:
        logger.warning(
            "Ignoring reference point lat=%r lon=%r: both must be numbers within range",
            lat, lon,
        )
        return None
    return parsed_lat, parsed_lon


def round_distance(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return round(float(value), 2)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class RestaurantQuery:
    """Read plan for the restaurant collection.

    With a reference point the read goes through the ``restaurants_with_distance``
    store function, which adds a Haversine ``distance`` column (km) to every row.
    Without one the plain table is read and no distance column exists.
    """

    columns: str = RESTAURANT_COLUMNS
    reference: tuple[float, float] | None = None

    @property
    def includes_distance(self) -> bool:
        return self.reference is not None

    def rpc_params(self) -> dict[str, float]:
        if self.reference is None:
            return {}
        lat, lon = self.reference
        return {"ref_lat": lat, "ref_lon": lon}

    def to_request(self, client: Any) -> Any:
        """Build the (not yet executed) supabase request for this query."""
        if self.includes_distance:
            return client.rpc(DISTANCE_RPC, self.rpc_params())
        return client.table(RESTAURANT_TABLE).select(self.columns)


def build_restaurant_query(lat: Any = None, lon: Any = None) -> RestaurantQuery:
    return RestaurantQuery(reference=resolve_reference_point(lat, lon))
