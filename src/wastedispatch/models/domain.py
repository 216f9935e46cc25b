"""Domain models for zones, depots and waste bins."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True, frozen=True)
class Depot:
    """Start and end point of every route in a zone."""

    latitude: float
    longitude: float


@dataclass(slots=True, frozen=True)
class BoundingBox:
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float


@dataclass(slots=True, frozen=True)
class Zone:
    """Collection zone reference data."""

    name: str
    depot: Depot
    bbox: Optional[BoundingBox] = None
    area_sq_km: Optional[float] = None
    population: Optional[int] = None
    last_collection_at: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class Bin:
    """Represents a waste bin as owned by the bin inventory."""

    bin_id: str
    zone: str
    latitude: float
    longitude: float
    capacity_kg: float
    last_pickup_at: Optional[datetime] = None
    est_rate_kg_per_day: Optional[float] = None
