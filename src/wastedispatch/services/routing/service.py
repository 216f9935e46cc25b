"""Dispatch orchestration: optimize, track and read per-zone route plans."""

from __future__ import annotations

import copy
import functools
import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Sequence

from ...config import settings
from ...data.inventory import count_bins, list_bins
from ...data.zone_registry import get_zone, list_zones
from ...errors import NotFoundError, ValidationError
from ...models.domain import Bin, Zone
from ...persistence.filesystem import FileStorage
from ...persistence.plans import PlanStore
from ..outputs.plan_formatter import plan_to_csv, plan_to_json
from . import tracker
from .builder import Refinement, build_route
from .directions import DirectionsAdapter, fallback_directions
from .models import (
    CollectionEvent,
    CollectionOutcome,
    DirectionsResult,
    FleetSummary,
    PlanState,
    PlanSummary,
    RoutePlan,
)
from .selector import select_bins

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DispatchService:
    """Single-truck-per-zone route planning with live collection tracking.

    ``optimize`` and ``mark_collected`` for one zone run under that zone's
    lock; different zones proceed in parallel. Road directions are fetched on
    a worker pool after the plan is committed, never under a zone lock.
    """

    def __init__(
        self,
        *,
        zones_loader: Callable[[], Sequence[Zone]] = list_zones,
        bins_loader: Callable[[Zone], Sequence[Bin]] = list_bins,
        bin_counter: Callable[[], int] = count_bins,
        store: PlanStore | None = None,
        directions: DirectionsAdapter | None = None,
        fleet: Sequence[str] | None = None,
        refinement: Refinement | None = None,
        directions_workers: int | None = None,
        persist_snapshots: bool | None = None,
    ) -> None:
        self._zones_loader = zones_loader
        self._bins_loader = bins_loader
        self._bin_counter = bin_counter
        self._store = store or PlanStore()
        self._directions = directions or DirectionsAdapter()
        self._fleet = tuple(fleet if fleet is not None else settings.fleet_truck_ids)
        self._refinement = refinement or settings.route_refinement
        self._persist_snapshots = settings.persist_snapshots if persist_snapshots is None else persist_snapshots
        self._executor = ThreadPoolExecutor(
            max_workers=directions_workers or settings.directions_workers,
            thread_name_prefix="directions",
        )
        # Truck assignment spans zones; held only while checking and committing.
        self._assignment_lock = threading.Lock()
        self._pending_directions: dict[str, Future] = {}

    def _zone_key(self, zone: str) -> str:
        """Registry spelling of ``zone``; unknown names are used as given."""
        try:
            return get_zone(zone, tuple(self._zones_loader())).name
        except (ValidationError, FileNotFoundError):
            return zone.strip()

    # -- planning -----------------------------------------------------------

    def optimize(
        self,
        zone: str,
        *,
        truck_id: str | None = None,
        threshold: float | None = None,
        high_priority_threshold: float | None = None,
        truck_capacity_kg: float | None = None,
        now: datetime | None = None,
    ) -> RoutePlan:
        """Build and commit a fresh plan for ``zone``, replacing any prior plan."""
        zone_ref = get_zone(zone, tuple(self._zones_loader()))
        threshold = settings.route_threshold if threshold is None else threshold
        if high_priority_threshold is None:
            high_priority_threshold = settings.high_priority_threshold
        capacity = settings.truck_capacity_kg if truck_capacity_kg is None else truck_capacity_kg
        if capacity < 0:
            raise ValidationError(f"Truck capacity must be non-negative, got {capacity!r}.")
        if truck_id is not None and not truck_id.strip():
            raise ValidationError("truck_id must not be blank")
        now = now or _utcnow()

        with self._store.locked(zone_ref.name), self._store.planning(zone_ref.name):
            bins = list(self._bins_loader(zone_ref))
            selection = select_bins(
                bins,
                now,
                threshold,
                high_priority_threshold=high_priority_threshold,
            )
            build = build_route(zone_ref.depot, selection.ranked, capacity, refinement=self._refinement)

            with self._assignment_lock:
                previous = self._store.get(zone_ref.name)
                assigned = self._assign_truck(zone_ref.name, truck_id, previous)
                plan = RoutePlan(
                    plan_id=uuid.uuid4().hex,
                    zone=zone_ref.name,
                    truck_id=assigned,
                    depot=zone_ref.depot,
                    stops=build.stops,
                    load_kg=build.load_kg,
                    distance_km=build.distance_km,
                    summary=PlanSummary(
                        threshold=threshold,
                        high_priority_threshold=high_priority_threshold,
                        total_bins=selection.total_bins,
                        considered_bins=len(selection.ranked),
                        high_priority_bins=selection.high_priority_bins,
                        baseline_distance_km=build.baseline_distance_km,
                        truck_capacity_kg=capacity,
                    ),
                    created_at=now,
                    updated_at=now,
                )
                if previous is not None and previous.truck_id != assigned:
                    self._directions.invalidate(previous.truck_id, previous.plan_id)
                self._directions.register_plan(assigned, plan.plan_id)
                self._store.put(zone_ref.name, plan)

        logger.info(
            "Committed plan %s for zone %s: truck=%s stops=%d load=%.1f/%.1f kg distance=%.2f km",
            plan.plan_id, plan.zone, plan.truck_id, len(plan.stops), plan.load_kg, capacity, plan.distance_km,
        )
        self._write_snapshot(plan)
        self._schedule_directions(plan)
        return copy.deepcopy(plan)

    def _engaged_trucks(self, exclude_zone: str) -> dict[str, str]:
        return {
            plan.truck_id: plan.zone
            for plan in self._store.all()
            if plan.zone != exclude_zone and tracker.plan_state(plan) is PlanState.ACTIVE
        }

    def _assign_truck(self, zone: str, requested: str | None, previous: RoutePlan | None) -> str:
        engaged = self._engaged_trucks(exclude_zone=zone)
        if requested:
            requested = requested.strip()
            if requested in engaged:
                raise ValidationError(f"Truck {requested} is already engaged on zone {engaged[requested]}.")
            if requested not in self._fleet:
                logger.warning("Truck %s is not part of the configured fleet", requested)
            return requested
        if previous is not None and previous.truck_id not in engaged:
            return previous.truck_id
        for candidate in self._fleet:
            if candidate not in engaged:
                return candidate
        raise ValidationError("No available trucks to dispatch.")

    def _write_snapshot(self, plan: RoutePlan) -> None:
        if not self._persist_snapshots:
            return
        try:
            storage = FileStorage()
            run_dir = storage.make_run_directory(prefix=f"plan_{plan.zone}")
            storage.write_json(run_dir / "plan.json", plan_to_json(plan))
            storage.write_csv(run_dir / "stops.csv", plan_to_csv(plan))
        except OSError as exc:
            # the in-memory plan stays authoritative
            logger.error("Failed to write snapshot for plan %s: %s", plan.plan_id, exc)

    # -- directions ---------------------------------------------------------

    def _schedule_directions(self, plan: RoutePlan) -> Future | None:
        if not plan.stops:
            return None
        future = self._executor.submit(
            self._directions.enrich,
            plan.truck_id,
            plan.plan_id,
            copy.deepcopy(plan.stops),
            plan.depot,
        )
        self._pending_directions[plan.truck_id] = future
        return future

    def directions_future(self, truck_id: str) -> Future | None:
        """The most recent enrichment request for ``truck_id``, if any."""
        return self._pending_directions.get(truck_id)

    def refresh_directions(self, truck_id: str) -> Future | None:
        """Retry road directions for the truck's current plan."""
        plan = self.get_plan_for_truck(truck_id)
        if self._directions.get(truck_id) is not None:
            return None
        return self._schedule_directions(plan)

    def get_directions(self, truck_id: str, *, allow_fallback: bool = False) -> DirectionsResult:
        cached = self._directions.get(truck_id)
        if cached is not None:
            return cached
        if allow_fallback:
            plan = self.get_plan_for_truck(truck_id)
            if plan.stops:
                return fallback_directions(plan)
        raise NotFoundError(f"Directions for truck {truck_id} are not available.")

    # -- collection tracking ------------------------------------------------

    def mark_collected(
        self,
        bin_id: str,
        truck_id: str,
        *,
        zone: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> CollectionOutcome:
        if not bin_id or not bin_id.strip():
            raise ValidationError("bin_id is required")
        if not truck_id or not truck_id.strip():
            raise ValidationError("truck_id is required")
        zone_name = self._zone_key(zone) if zone else self._store.zone_for_truck(truck_id)
        if not zone_name:
            raise NotFoundError(f"No route plan is assigned to truck {truck_id}.")
        now = now or _utcnow()

        with self._store.locked(zone_name):
            working = self._store.get(zone_name)
            if working is None:
                raise NotFoundError(f"No route plan exists for zone {zone_name}.")
            outcome = tracker.mark_collected(working, bin_id, truck_id, now)
            if not outcome.already_visited:
                self._store.put(zone_name, working)
            self._store.record_event(
                CollectionEvent(
                    bin_id=bin_id,
                    truck_id=truck_id,
                    zone=zone_name,
                    recorded_at=now,
                    notes=notes,
                    duplicate=outcome.already_visited,
                )
            )
        return CollectionOutcome(plan=copy.deepcopy(outcome.plan), already_visited=outcome.already_visited)

    def collection_events(self, zone: str | None = None) -> list[CollectionEvent]:
        return self._store.events(zone)

    # -- reads --------------------------------------------------------------

    def get_plan(self, zone: str) -> RoutePlan:
        plan = self._store.get(self._zone_key(zone))
        if plan is None:
            raise NotFoundError(f"No route plan exists for zone {zone}.")
        return plan

    def get_plan_for_truck(self, truck_id: str) -> RoutePlan:
        zone = self._store.zone_for_truck(truck_id)
        plan = self._store.get(zone) if zone else None
        if plan is None:
            raise NotFoundError(f"No route plan is assigned to truck {truck_id}.")
        return plan

    def plan_state(self, zone: str) -> PlanState:
        key = self._zone_key(zone)
        if self._store.is_planning(key):
            return PlanState.PLANNING
        return tracker.plan_state(self._store.get(key))

    def fleet_summary(self) -> FleetSummary:
        plans = self._store.all()
        active = [plan for plan in plans if tracker.plan_state(plan) is PlanState.ACTIVE]
        engaged = sorted({plan.truck_id for plan in active})
        fleet = set(self._fleet) | set(engaged)
        return FleetSummary(
            total_zones=len(self._zones_loader()),
            planned_zones=len(plans),
            active_zones=len({plan.zone for plan in active}),
            fleet_size=len(fleet),
            engaged_trucks=len(engaged),
            available_trucks=len(fleet) - len(engaged),
            total_bins=self._bin_counter(),
            engaged_truck_ids=engaged,
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


@functools.lru_cache(maxsize=1)
def get_dispatch_service() -> DispatchService:
    return DispatchService()
