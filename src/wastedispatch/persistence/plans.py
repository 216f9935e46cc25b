"""In-process store holding the authoritative route plan per zone."""

from __future__ import annotations

import copy
import threading
from collections import deque
from contextlib import contextmanager
from typing import Iterator

from ..config import settings
from ..services.routing.models import CollectionEvent, RoutePlan


class PlanStore:
    """Zone-keyed plan slots, each guarded by its own lock.

    Writers hold the zone lock from ``locked(zone)`` for the whole
    read-modify-write and publish a new plan object with ``put``. Committed
    plan objects are never mutated afterwards, so readers get consistent
    copies without taking a zone lock.
    """

    def __init__(self, max_events: int | None = None) -> None:
        self._guard = threading.Lock()
        self._zone_locks: dict[str, threading.Lock] = {}
        self._plans: dict[str, RoutePlan] = {}
        self._planning: set[str] = set()
        self._events: deque[CollectionEvent] = deque(maxlen=max_events or settings.collection_event_limit)

    def _zone_lock(self, zone: str) -> threading.Lock:
        with self._guard:
            lock = self._zone_locks.get(zone)
            if lock is None:
                lock = self._zone_locks[zone] = threading.Lock()
            return lock

    @contextmanager
    def locked(self, zone: str) -> Iterator[None]:
        with self._zone_lock(zone):
            yield

    @contextmanager
    def planning(self, zone: str) -> Iterator[None]:
        """Mark ``zone`` as planning; the caller must already hold its lock."""
        with self._guard:
            self._planning.add(zone)
        try:
            yield
        finally:
            with self._guard:
                self._planning.discard(zone)

    def is_planning(self, zone: str) -> bool:
        with self._guard:
            return zone in self._planning

    def put(self, zone: str, plan: RoutePlan) -> None:
        with self._guard:
            self._plans[zone] = plan

    def get(self, zone: str) -> RoutePlan | None:
        with self._guard:
            plan = self._plans.get(zone)
        return copy.deepcopy(plan) if plan is not None else None

    def all(self) -> list[RoutePlan]:
        with self._guard:
            plans = list(self._plans.values())
        return [copy.deepcopy(plan) for plan in plans]

    def zone_for_truck(self, truck_id: str) -> str | None:
        """Zone of the most recently updated plan assigned to ``truck_id``."""
        with self._guard:
            candidates = [plan for plan in self._plans.values() if plan.truck_id == truck_id]
        if not candidates:
            return None
        return max(candidates, key=lambda plan: plan.updated_at).zone

    def record_event(self, event: CollectionEvent) -> None:
        with self._guard:
            self._events.append(event)

    def events(self, zone: str | None = None) -> list[CollectionEvent]:
        with self._guard:
            return [event for event in self._events if zone is None or event.zone == zone]
