"""Fill estimation from static capacity and time-based accrual."""

from __future__ import annotations

import math
from datetime import datetime, timezone

from ...config import settings
from ...errors import ValidationError
from ...models.domain import Bin
from ..geospatial import is_valid_coordinate
from .models import FillEstimate

SECONDS_PER_DAY = 86400.0


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_days(last_pickup_at: datetime | None, now: datetime, *, unknown_pickup_days: float) -> float:
    """Days since the last pickup, never negative."""
    if last_pickup_at is None:
        return unknown_pickup_days
    seconds = (_as_utc(now) - _as_utc(last_pickup_at)).total_seconds()
    return max(0.0, seconds / SECONDS_PER_DAY)


def validate_bin(bin_: Bin) -> None:
    if not bin_.bin_id:
        raise ValidationError("Bin record is missing a bin_id.")
    if not math.isfinite(bin_.capacity_kg) or bin_.capacity_kg < 0:
        raise ValidationError(f"Bin {bin_.bin_id} has invalid capacity {bin_.capacity_kg!r}.")
    rate = bin_.est_rate_kg_per_day
    if rate is not None and (not math.isfinite(rate) or rate < 0):
        raise ValidationError(f"Bin {bin_.bin_id} has invalid accrual rate {rate!r}.")
    if not is_valid_coordinate(bin_.latitude, bin_.longitude):
        raise ValidationError(
            f"Bin {bin_.bin_id} has invalid coordinates ({bin_.latitude}, {bin_.longitude})."
        )


def estimate_fill(
    bin_: Bin,
    now: datetime,
    *,
    default_rate_kg_per_day: float | None = None,
    unknown_pickup_days: float | None = None,
) -> FillEstimate:
    """Estimate the current load of a bin.

    estimated_kg = min(capacity, rate * elapsed_days); the fill ratio is 0 for a
    zero-capacity bin.
    """
    validate_bin(bin_)
    if default_rate_kg_per_day is None:
        default_rate_kg_per_day = settings.default_accrual_rate_kg_per_day
    if unknown_pickup_days is None:
        unknown_pickup_days = settings.unknown_pickup_days

    rate = bin_.est_rate_kg_per_day if bin_.est_rate_kg_per_day is not None else default_rate_kg_per_day
    days = elapsed_days(bin_.last_pickup_at, now, unknown_pickup_days=unknown_pickup_days)
    estimated_kg = min(bin_.capacity_kg, rate * days)
    fill_ratio = estimated_kg / bin_.capacity_kg if bin_.capacity_kg > 0 else 0.0
    return FillEstimate(bin_id=bin_.bin_id, estimated_kg=estimated_kg, fill_ratio=fill_ratio)
