"""Collection progress tracking against a committed plan."""

from __future__ import annotations

import logging
from datetime import datetime

from ...errors import NotFoundError
from .models import CollectionOutcome, PlanState, RoutePlan

logger = logging.getLogger(__name__)


def completed_stops(plan: RoutePlan) -> int:
    return sum(1 for stop in plan.stops if stop.visited)


def pending_stops(plan: RoutePlan) -> int:
    return sum(1 for stop in plan.stops if not stop.visited)


def plan_state(plan: RoutePlan | None) -> PlanState:
    if plan is None:
        return PlanState.NO_PLAN
    return PlanState.ACTIVE if pending_stops(plan) > 0 else PlanState.COMPLETE


def efficiency_gain_pct(plan: RoutePlan) -> float | None:
    """Distance saved by the sequenced route relative to the ranked-order baseline."""
    baseline = plan.summary.baseline_distance_km
    if baseline <= 0:
        return None
    return round((baseline - plan.distance_km) / baseline * 100.0, 1)


def mark_collected(plan: RoutePlan, bin_id: str, truck_id: str, now: datetime) -> CollectionOutcome:
    """Flip the stop for ``bin_id`` to visited.

    A repeated confirmation is reported through ``already_visited`` and leaves
    the plan untouched.
    """
    if plan.truck_id != truck_id:
        raise NotFoundError(
            f"Truck {truck_id} is not assigned to the {plan.zone} plan (assigned: {plan.truck_id})."
        )
    stop = next((item for item in plan.stops if item.bin_id == bin_id), None)
    if stop is None:
        raise NotFoundError(f"Bin {bin_id} is not on the current route for truck {truck_id}.")
    if stop.visited:
        logger.info("Duplicate collection confirmation for bin %s (truck %s)", bin_id, truck_id)
        return CollectionOutcome(plan=plan, already_visited=True)

    stop.visited = True
    stop.visited_at = now
    plan.updated_at = now
    logger.info(
        "Bin %s collected by %s: %d/%d stops done",
        bin_id, truck_id, completed_stops(plan), len(plan.stops),
    )
    return CollectionOutcome(plan=plan, already_visited=False)
