"""Capacity-bounded stop selection and nearest-neighbour sequencing.

Bins are admitted greedily in priority order while the truck has room, then
visited nearest-first from the depot and back. The heuristic keeps planning
time bounded for zones with tens of bins; ``refinement="two_opt"`` adds a
2-opt pass over the closed tour without changing the interface.
"""

from __future__ import annotations

import logging
from typing import Literal, Sequence

from ...errors import ValidationError
from ...models.domain import Depot
from ..geospatial import haversine_km, path_distance_km
from .models import BuildResult, RankedBin, Stop

logger = logging.getLogger(__name__)

Refinement = Literal["none", "two_opt"]

# Minimum gain (km) for a 2-opt move to be applied.
IMPROVEMENT_EPSILON_KM = 1e-9


def admit_by_capacity(ranked: Sequence[RankedBin], truck_capacity_kg: float) -> list[RankedBin]:
    """Accept bins in ranked order while the cumulative load fits.

    A bin that does not fit is skipped; lower-ranked bins that still fit are
    considered. Bins are never partially collected.
    """
    admitted: list[RankedBin] = []
    load = 0.0
    for item in ranked:
        weight = item.estimate.estimated_kg
        if load + weight > truck_capacity_kg:
            logger.debug(
                "Skipping bin %s (%.1f kg): load %.1f of %.1f kg",
                item.bin.bin_id, weight, load, truck_capacity_kg,
            )
            continue
        admitted.append(item)
        load += weight
    return admitted


def nearest_neighbor_order(depot: Depot, items: Sequence[RankedBin]) -> list[RankedBin]:
    """Visit the closest remaining bin next; ties go to the earlier item."""
    remaining = list(items)
    ordered: list[RankedBin] = []
    current = (depot.latitude, depot.longitude)
    while remaining:
        best_index = 0
        best_distance = float("inf")
        for index, item in enumerate(remaining):
            distance = haversine_km(current[0], current[1], item.bin.latitude, item.bin.longitude)
            if distance < best_distance:
                best_distance = distance
                best_index = index
        chosen = remaining.pop(best_index)
        ordered.append(chosen)
        current = (chosen.bin.latitude, chosen.bin.longitude)
    return ordered


def two_opt(depot: Depot, items: Sequence[RankedBin]) -> list[RankedBin]:
    """Reverse tour segments while doing so shortens the closed depot tour."""
    tour = list(items)
    n = len(tour)
    if n < 3:
        return tour

    def point(index: int) -> tuple[float, float]:
        # index -1 and n both denote the depot
        if index < 0 or index >= n:
            return depot.latitude, depot.longitude
        return tour[index].bin.latitude, tour[index].bin.longitude

    def dist(a: tuple[float, float], b: tuple[float, float]) -> float:
        return haversine_km(a[0], a[1], b[0], b[1])

    improved = True
    while improved:
        improved = False
        for i in range(n - 1):
            for j in range(i + 1, n):
                before = dist(point(i - 1), point(i)) + dist(point(j), point(j + 1))
                after = dist(point(i - 1), point(j)) + dist(point(i), point(j + 1))
                if before - after > IMPROVEMENT_EPSILON_KM:
                    tour[i : j + 1] = reversed(tour[i : j + 1])
                    improved = True
    return tour


def _closed_distance(depot: Depot, items: Sequence[RankedBin]) -> float:
    points = [(depot.latitude, depot.longitude)]
    points.extend((item.bin.latitude, item.bin.longitude) for item in items)
    points.append((depot.latitude, depot.longitude))
    return path_distance_km(points)


def build_route(
    depot: Depot,
    ranked: Sequence[RankedBin],
    truck_capacity_kg: float,
    *,
    refinement: Refinement = "none",
) -> BuildResult:
    if truck_capacity_kg < 0:
        raise ValidationError(f"Truck capacity must be non-negative, got {truck_capacity_kg!r}.")
    if not ranked:
        return BuildResult(stops=[], load_kg=0.0, distance_km=0.0, baseline_distance_km=0.0)

    admitted = admit_by_capacity(ranked, truck_capacity_kg)
    ordered = nearest_neighbor_order(depot, admitted)
    if refinement == "two_opt":
        ordered = two_opt(depot, ordered)

    stops = [
        Stop(
            bin_id=item.bin.bin_id,
            sequence=sequence,
            latitude=item.bin.latitude,
            longitude=item.bin.longitude,
            est_kg=item.estimate.estimated_kg,
        )
        for sequence, item in enumerate(ordered, start=1)
    ]
    return BuildResult(
        stops=stops,
        load_kg=sum(item.estimate.estimated_kg for item in admitted),
        distance_km=_closed_distance(depot, ordered),
        baseline_distance_km=_closed_distance(depot, admitted),
    )
