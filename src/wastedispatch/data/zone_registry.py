"""Zone loader with database-first approach, falling back to an Excel workbook."""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from openpyxl import load_workbook

from ..config import settings
from ..db.supabase import get_supabase_client
from ..errors import ValidationError
from ..models.domain import BoundingBox, Depot, Zone

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"Zone", "Latitude", "Longitude"}
BBOX_COLUMNS = ("MinLat", "MinLon", "MaxLat", "MaxLon")


def _normalize_zone_name(name: str) -> str:
    return name.strip()


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(float(value))


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _bbox_from_values(values: list[Any]) -> Optional[BoundingBox]:
    if any(value is None or value == "" for value in values):
        return None
    min_lat, min_lon, max_lat, max_lon = (float(value) for value in values)
    return BoundingBox(min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon)


def _load_zones_from_database() -> tuple[Zone, ...] | None:
    """Load zones from Supabase. Returns None if the database is not available or empty."""
    supabase = get_supabase_client()
    if not supabase:
        return None

    try:
        response = supabase.table("zones").select("*").execute()
    except Exception as exc:
        logger.debug(f"Zone query failed, falling back to file: {exc}")
        return None
    if not response.data:
        return None

    zones: list[Zone] = []
    for row in response.data:
        try:
            bbox = row.get("bbox")
            zones.append(
                Zone(
                    name=_normalize_zone_name(str(row["name"])),
                    depot=Depot(latitude=float(row["depot_lat"]), longitude=float(row["depot_lon"])),
                    bbox=_bbox_from_values(list(bbox)) if bbox else None,
                    area_sq_km=_optional_float(row.get("area_sq_km")),
                    population=_optional_int(row.get("population")),
                    last_collection_at=parse_timestamp(row.get("last_collection_at")),
                )
            )
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning(f"Skipping invalid zone row: {exc}")
            continue
    return tuple(zones) if zones else None


def _load_zones_from_file(source: Path | None = None) -> tuple[Zone, ...]:
    """Load zones from the Excel workbook."""
    workbook_path = source or settings.zones_file
    if not workbook_path.exists():
        raise FileNotFoundError(f"Zone workbook not found: {workbook_path}")

    wb = load_workbook(workbook_path, data_only=True, read_only=True)
    try:
        sheet = wb.active
        rows = sheet.iter_rows(min_row=1, values_only=True)
        header = next(rows, None)
        if header is None:
            raise ValueError(f"Zone workbook '{workbook_path}' is empty.")

        header_map = {name: idx for idx, name in enumerate(header) if name}
        missing_columns = REQUIRED_COLUMNS - set(header_map)
        if missing_columns:
            raise ValueError(f"Zone workbook missing columns: {', '.join(sorted(missing_columns))}")

        def cell(row: tuple, column: str) -> Any:
            idx = header_map.get(column)
            return row[idx] if idx is not None and idx < len(row) else None

        zones: list[Zone] = []
        for row in rows:
            zone_value = cell(row, "Zone")
            if not zone_value:
                continue
            zones.append(
                Zone(
                    name=_normalize_zone_name(str(zone_value)),
                    depot=Depot(latitude=float(cell(row, "Latitude")), longitude=float(cell(row, "Longitude"))),
                    bbox=_bbox_from_values([cell(row, column) for column in BBOX_COLUMNS]),
                    area_sq_km=_optional_float(cell(row, "AreaSqKm")),
                    population=_optional_int(cell(row, "Population")),
                    last_collection_at=parse_timestamp(cell(row, "LastCollectionAt")),
                )
            )
    finally:
        wb.close()
    return tuple(zones)


@functools.lru_cache(maxsize=1)
def list_zones(source: Path | None = None) -> tuple[Zone, ...]:
    """Get zones from the database first, falling back to the workbook."""
    db_zones = _load_zones_from_database()
    if db_zones:
        return db_zones
    return _load_zones_from_file(source)


def get_zone(name: str, zones: tuple[Zone, ...] | None = None) -> Zone:
    if not name or not name.strip():
        raise ValidationError("zone is required")
    normalized = _normalize_zone_name(name).lower()
    for zone in zones if zones is not None else list_zones():
        if zone.name.lower() == normalized:
            return zone
    raise ValidationError(f"Unknown zone '{name}'.")
