"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ...models.domain import Bin, Depot


class PlanState(str, Enum):
    NO_PLAN = "no_plan"
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETE = "complete"


@dataclass(slots=True, frozen=True)
class FillEstimate:
    bin_id: str
    estimated_kg: float
    fill_ratio: float


@dataclass(slots=True, frozen=True)
class RankedBin:
    bin: Bin
    estimate: FillEstimate


@dataclass(slots=True)
class Selection:
    ranked: List[RankedBin]
    total_bins: int
    high_priority_bins: int


@dataclass(slots=True)
class Stop:
    bin_id: str
    sequence: int
    latitude: float
    longitude: float
    est_kg: float
    visited: bool = False
    visited_at: Optional[datetime] = None


@dataclass(slots=True)
class BuildResult:
    stops: List[Stop]
    load_kg: float
    distance_km: float
    baseline_distance_km: float


@dataclass(slots=True)
class PlanSummary:
    threshold: float
    high_priority_threshold: float
    total_bins: int
    considered_bins: int
    high_priority_bins: int
    baseline_distance_km: float
    truck_capacity_kg: float


@dataclass(slots=True)
class RoutePlan:
    plan_id: str
    zone: str
    truck_id: str
    depot: Depot
    stops: List[Stop]
    load_kg: float
    distance_km: float
    summary: PlanSummary
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True, frozen=True)
class DirectionsResult:
    truck_id: str
    plan_id: str
    line: dict
    distance_km: float
    duration_min: float
    source: str = "osrm"


@dataclass(slots=True)
class CollectionOutcome:
    plan: RoutePlan
    already_visited: bool


@dataclass(slots=True, frozen=True)
class CollectionEvent:
    bin_id: str
    truck_id: str
    zone: str
    recorded_at: datetime
    notes: Optional[str] = None
    duplicate: bool = False


@dataclass(slots=True)
class FleetSummary:
    total_zones: int
    planned_zones: int
    active_zones: int
    fleet_size: int
    engaged_trucks: int
    available_trucks: int
    total_bins: int
    engaged_truck_ids: List[str] = field(default_factory=list)
