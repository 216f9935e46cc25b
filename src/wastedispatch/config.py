"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="WD_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Waste Collection Dispatch API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for static data files.")
    bins_file: Path = Field(
        default=Path("data/bins.csv"),
        description="Bin inventory with coordinates, capacity and accrual rates.",
    )
    zones_file: Path = Field(
        default=Path("data/zones.xlsx"),
        description="Collection zones with depot coordinates and bounding boxes.",
    )
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., https://router.project-osrm.org).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(
        default="driving",
        description="OSRM profile to use when requesting road directions.",
    )
    osrm_timeout_seconds: float = Field(default=3.5, gt=0.0)
    osrm_max_retries: int = Field(default=1, ge=0)
    osrm_backoff_seconds: float = Field(default=0.5, ge=0.0)
    route_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Minimum estimated fill ratio for a bin to be scheduled.",
    )
    high_priority_threshold: float = Field(
        default=0.45,
        ge=0.0,
        le=1.0,
        description="Fill ratio at which a bin is reported as high priority.",
    )
    truck_capacity_kg: float = Field(default=3000.0, ge=0.0)
    default_accrual_rate_kg_per_day: float = Field(default=3.0, ge=0.0)
    unknown_pickup_days: float = Field(
        default=1.0,
        ge=0.0,
        description="Days of accrual assumed for bins without a recorded pickup.",
    )
    fallback_average_speed_kph: float = Field(default=25.0, gt=0.0)
    route_refinement: Literal["none", "two_opt"] = Field(default="none")
    fleet_truck_ids: tuple[str, ...] = Field(
        default=("TRUCK-01", "TRUCK-02", "TRUCK-03", "TRUCK-04", "TRUCK-05"),
        description="Trucks available for dispatch.",
    )
    directions_workers: int = Field(default=4, ge=1)
    collection_event_limit: int = Field(
        default=1000,
        ge=1,
        description="Most recent collection events kept in memory; older ones are dropped.",
    )
    persist_snapshots: bool = Field(
        default=False,
        description="Write a JSON/CSV snapshot of every committed plan under data_root/outputs.",
    )
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("data_root", "bins_file", "zones_file", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", "fleet_truck_ids", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
