"""Threshold filtering and priority ranking of a zone's bins."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from ...config import settings
from ...errors import ValidationError
from ...models.domain import Bin
from .estimator import estimate_fill
from .models import RankedBin, Selection


def _check_ratio(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be between 0 and 1, got {value!r}.")


def _rank_key(item: RankedBin) -> tuple[float, float, str]:
    return (-item.estimate.fill_ratio, -item.estimate.estimated_kg, item.bin.bin_id)


def select_bins(
    bins: Sequence[Bin],
    now: datetime,
    threshold: float | None = None,
    *,
    high_priority_threshold: float | None = None,
    default_rate_kg_per_day: float | None = None,
    unknown_pickup_days: float | None = None,
) -> Selection:
    """Return bins at or above ``threshold``, most urgent first.

    Ties on fill ratio go to the heavier bin, then to the lower bin_id.
    ``high_priority_bins`` counts every evaluated bin at or above
    ``high_priority_threshold``; it never changes which bins are selected.
    """
    threshold = settings.route_threshold if threshold is None else threshold
    if high_priority_threshold is None:
        high_priority_threshold = settings.high_priority_threshold
    _check_ratio("threshold", threshold)
    _check_ratio("high_priority_threshold", high_priority_threshold)

    ranked: list[RankedBin] = []
    high_priority = 0
    seen: set[str] = set()
    for bin_ in bins:
        if bin_.bin_id in seen:
            raise ValidationError(f"Duplicate bin_id {bin_.bin_id!r} in zone inventory.")
        seen.add(bin_.bin_id)
        estimate = estimate_fill(
            bin_,
            now,
            default_rate_kg_per_day=default_rate_kg_per_day,
            unknown_pickup_days=unknown_pickup_days,
        )
        if estimate.fill_ratio >= high_priority_threshold:
            high_priority += 1
        if estimate.fill_ratio >= threshold:
            ranked.append(RankedBin(bin=bin_, estimate=estimate))

    ranked.sort(key=_rank_key)
    return Selection(ranked=ranked, total_bins=len(bins), high_priority_bins=high_priority)
