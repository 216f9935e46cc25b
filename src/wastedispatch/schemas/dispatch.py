"""Pydantic request/response models for dispatch endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class OptimizeRequest(BaseModel):
    zone: str = Field(..., description="Zone to plan a collection route for.")
    truck_id: Optional[str] = Field(default=None, description="Truck to assign; picked from the fleet when omitted.")
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Minimum fill ratio to collect.")
    high_priority_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    truck_capacity_kg: Optional[float] = Field(default=None, ge=0.0)

    @field_validator("zone")
    @classmethod
    def validate_zone(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("zone must not be blank")
        return value.strip()


class CollectionRequest(BaseModel):
    bin_id: str
    truck_id: str
    zone: Optional[str] = None
    notes: Optional[str] = Field(default=None, description="Free-form notes from the crew.")


class PointModel(BaseModel):
    lat: float
    lon: float


class StopModel(BaseModel):
    bin_id: str
    sequence: int
    lat: float
    lon: float
    est_kg: float
    visited: bool
    visited_at: Optional[datetime] = None


class PlanSummaryModel(BaseModel):
    threshold: float
    high_priority_threshold: float
    total_bins: int
    considered_bins: int
    high_priority_bins: int
    baseline_distance_km: float
    truck_capacity_kg: float
    completed_stops: int
    pending_stops: int
    efficiency_gain_pct: Optional[float] = None


class RoutePlanModel(BaseModel):
    plan_id: str
    zone: str
    truck_id: str
    state: str
    depot: PointModel
    stops: List[StopModel]
    load_kg: float
    distance_km: float
    summary: PlanSummaryModel
    created_at: datetime
    updated_at: datetime


class CollectionResponse(BaseModel):
    already_visited: bool
    plan: RoutePlanModel


class CollectionEventModel(BaseModel):
    bin_id: str
    truck_id: str
    zone: str
    recorded_at: datetime
    notes: Optional[str] = None
    duplicate: bool = False


class DirectionsModel(BaseModel):
    truck_id: str
    plan_id: str
    line: dict
    distance_km: float
    duration_min: float
    source: str


class FleetSummaryModel(BaseModel):
    total_zones: int
    planned_zones: int
    active_zones: int
    fleet_size: int
    engaged_trucks: int
    available_trucks: int
    total_bins: int
    engaged_truck_ids: List[str] = Field(default_factory=list)


class ZoneModel(BaseModel):
    name: str
    depot: PointModel
    bbox: Optional[List[float]] = Field(default=None, description="[min_lat, min_lon, max_lat, max_lon]")
    area_sq_km: Optional[float] = None
    population: Optional[int] = None
    last_collection_at: Optional[datetime] = None
    plan_state: str


class BinModel(BaseModel):
    bin_id: str
    zone: str
    lat: float
    lon: float
    capacity_kg: float
    last_pickup_at: Optional[datetime] = None
    est_rate_kg_per_day: Optional[float] = None
