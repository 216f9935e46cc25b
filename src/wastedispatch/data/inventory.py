"""Bin inventory access: Supabase when configured, otherwise the bins CSV."""

from __future__ import annotations

import csv
import functools
import logging
from pathlib import Path
from typing import Optional

from ..config import settings
from ..db.supabase import get_supabase_client
from ..errors import ValidationError
from ..models.domain import Bin, Zone
from ..services.geospatial import point_in_bbox
from .zone_registry import parse_timestamp

logger = logging.getLogger(__name__)


def _coerce_float(value: Optional[str], field: str, bin_id: str) -> Optional[float]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return float(str(value).replace(",", ""))
    except ValueError as exc:
        raise ValidationError(f"Bin {bin_id}: unable to parse {field} from value '{value}'") from exc


def _first(row: dict, *keys: str):
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None


def _row_to_bin(row: dict) -> Optional[Bin]:
    bin_id = str(_first(row, "bin_id", "binId") or "").strip()
    if not bin_id:
        raise ValidationError("Bin row is missing a bin_id.")
    lat = _coerce_float(_first(row, "latitude", "lat"), "latitude", bin_id)
    lon = _coerce_float(_first(row, "longitude", "lon"), "longitude", bin_id)
    if lat is None or lon is None:
        return None  # ignore records without coordinates
    capacity = _coerce_float(_first(row, "capacity_kg", "capacityKg"), "capacity_kg", bin_id)
    if capacity is None:
        raise ValidationError(f"Bin {bin_id} is missing capacity_kg.")
    try:
        last_pickup_at = parse_timestamp(_first(row, "last_pickup_at", "lastPickupAt"))
    except ValueError as exc:
        raise ValidationError(f"Bin {bin_id}: invalid last_pickup_at") from exc
    return Bin(
        bin_id=bin_id,
        zone=str(row.get("zone") or "").strip(),
        latitude=lat,
        longitude=lon,
        capacity_kg=capacity,
        last_pickup_at=last_pickup_at,
        est_rate_kg_per_day=_coerce_float(
            _first(row, "est_rate_kg_per_day", "estRateKgPerDay"), "est_rate_kg_per_day", bin_id
        ),
    )


def _load_bins_from_database() -> tuple[Bin, ...] | None:
    supabase = get_supabase_client()
    if not supabase:
        return None
    try:
        response = supabase.table("bins").select("*").execute()
    except Exception as exc:
        logger.debug(f"Bin query failed, falling back to file: {exc}")
        return None
    if not response.data:
        return None
    bins = [_row_to_bin(row) for row in response.data]
    return tuple(bin_ for bin_ in bins if bin_ is not None)


def _load_bins_from_file(source: Optional[Path] = None) -> tuple[Bin, ...]:
    csv_path = source or settings.bins_file
    if not csv_path.exists():
        raise FileNotFoundError(f"Bin file not found: {csv_path}")

    bins: list[Bin] = []
    with csv_path.open(mode="r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            raise ValueError(f"Bin file '{csv_path}' is missing a header row.")
        for row in reader:
            bin_ = _row_to_bin(row)
            if bin_ is not None:
                bins.append(bin_)
    return tuple(bins)


@functools.lru_cache(maxsize=1)
def load_bins(source: Optional[Path] = None) -> tuple[Bin, ...]:
    """Load the full bin inventory."""
    db_bins = _load_bins_from_database()
    if db_bins:
        return db_bins
    return _load_bins_from_file(source)


def list_bins(zone: Zone) -> tuple[Bin, ...]:
    """Bins belonging to ``zone``; bins outside the zone's bbox are logged but kept."""
    normalized = zone.name.strip().lower()
    bins = tuple(bin_ for bin_ in load_bins() if bin_.zone.lower() == normalized)
    if zone.bbox is not None:
        for bin_ in bins:
            if not point_in_bbox(bin_.latitude, bin_.longitude, zone.bbox):
                logger.warning(f"Bin {bin_.bin_id} lies outside the bounding box of zone {zone.name}")
    return bins


def count_bins() -> int:
    return len(load_bins())
