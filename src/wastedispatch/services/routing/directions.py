"""Road directions for committed plans, cached per truck."""

from __future__ import annotations

import logging
import threading
from typing import Sequence

from ...config import settings
from ...errors import CollaboratorUnavailable
from ...models.domain import Depot
from ..geospatial import is_valid_coordinate, path_distance_km
from .models import DirectionsResult, RoutePlan, Stop
from .osrm_client import OSRMClient

logger = logging.getLogger(__name__)


def build_waypoints(depot: Depot, stops: Sequence[Stop]) -> list[tuple[float, float]]:
    """Depot, stops in sequence order, depot again."""
    waypoints = [(depot.latitude, depot.longitude)]
    for stop in stops:
        if not is_valid_coordinate(stop.latitude, stop.longitude):
            logger.warning("Skipping stop %s with invalid coordinates", stop.bin_id)
            continue
        waypoints.append((stop.latitude, stop.longitude))
    waypoints.append((depot.latitude, depot.longitude))
    return waypoints


def to_geojson_line(waypoints: Sequence[tuple[float, float]]) -> dict:
    return {
        "type": "LineString",
        "coordinates": [[lon, lat] for lat, lon in waypoints],
    }


def fallback_directions(plan: RoutePlan, *, average_speed_kph: float | None = None) -> DirectionsResult:
    """Straight-line directions derived from the plan itself.

    Uses the plan's stored distance when positive, otherwise the great-circle
    length of the waypoint line, and a constant average speed for duration.
    """
    speed = average_speed_kph or settings.fallback_average_speed_kph
    waypoints = build_waypoints(plan.depot, plan.stops)
    distance_km = plan.distance_km if plan.distance_km > 0 else path_distance_km(waypoints)
    return DirectionsResult(
        truck_id=plan.truck_id,
        plan_id=plan.plan_id,
        line=to_geojson_line(waypoints),
        distance_km=distance_km,
        duration_min=round(distance_km / speed * 60.0),
        source="fallback",
    )


class DirectionsAdapter:
    """Fetches road geometry from OSRM and keeps the latest result per truck.

    A result is stored only while its plan is still the truck's current plan,
    so a slow request for a replaced plan never overwrites newer state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cache: dict[str, DirectionsResult] = {}
        self._current_plan: dict[str, str] = {}

    def register_plan(self, truck_id: str, plan_id: str) -> None:
        with self._lock:
            self._current_plan[truck_id] = plan_id
            self._cache.pop(truck_id, None)

    def invalidate(self, truck_id: str, plan_id: str) -> None:
        """Forget directions for ``plan_id``; a newer plan on the truck is kept."""
        with self._lock:
            if self._current_plan.get(truck_id) != plan_id:
                return
            self._cache.pop(truck_id, None)
            self._current_plan.pop(truck_id, None)

    def get(self, truck_id: str) -> DirectionsResult | None:
        with self._lock:
            return self._cache.get(truck_id)

    def enrich(
        self,
        truck_id: str,
        plan_id: str,
        stops: Sequence[Stop],
        depot: Depot,
    ) -> DirectionsResult | None:
        """Request road directions; returns None when they are unavailable."""
        if not stops:
            return None
        waypoints = build_waypoints(depot, stops)
        if len(waypoints) < 3:
            return None

        try:
            client = OSRMClient()
        except ValueError as exc:
            logger.info("Road directions disabled: %s", exc)
            return None

        try:
            route = client.route(waypoints)
            result = DirectionsResult(
                truck_id=truck_id,
                plan_id=plan_id,
                line=route.get("geometry") or to_geojson_line(waypoints),
                distance_km=float(route["distance"]) / 1000.0,
                duration_min=float(route["duration"]) / 60.0,
                source="osrm",
            )
        except (CollaboratorUnavailable, KeyError, TypeError, ValueError) as exc:
            logger.warning("Directions unavailable for truck %s (plan %s): %s", truck_id, plan_id, exc)
            return None

        with self._lock:
            if self._current_plan.get(truck_id) != plan_id:
                logger.info("Discarding directions for superseded plan %s of truck %s", plan_id, truck_id)
                return None
            self._cache[truck_id] = result
        logger.info(
            "Directions ready for truck %s: %.2f km, %.0f min",
            truck_id, result.distance_km, result.duration_min,
        )
        return result
