from datetime import datetime, timedelta, timezone

import pytest

from wastedispatch.errors import ValidationError
from wastedispatch.models.domain import Bin
from wastedispatch.services.routing.estimator import elapsed_days, estimate_fill

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def _bin(bin_id: str = "B1", *, capacity: float = 100.0, days=None, rate=10.0, lat=0.0, lon=0.0) -> Bin:
    return Bin(
        bin_id=bin_id,
        zone="North",
        latitude=lat,
        longitude=lon,
        capacity_kg=capacity,
        last_pickup_at=NOW - timedelta(days=days) if days is not None else None,
        est_rate_kg_per_day=rate,
    )


def test_estimate_accrues_linearly() -> None:
    estimate = estimate_fill(_bin(days=5), NOW)

    assert estimate.bin_id == "B1"
    assert estimate.estimated_kg == pytest.approx(50.0)
    assert estimate.fill_ratio == pytest.approx(0.5)


def test_estimate_is_capped_at_capacity() -> None:
    estimate = estimate_fill(_bin(days=30), NOW)

    assert estimate.estimated_kg == pytest.approx(100.0)
    assert estimate.fill_ratio == pytest.approx(1.0)


def test_zero_capacity_bin_has_zero_ratio() -> None:
    estimate = estimate_fill(_bin(capacity=0.0, days=5), NOW)

    assert estimate.estimated_kg == 0.0
    assert estimate.fill_ratio == 0.0


def test_unknown_pickup_uses_default_rate_and_days() -> None:
    bin_ = _bin(days=None, rate=None)
    estimate = estimate_fill(bin_, NOW, default_rate_kg_per_day=3.0, unknown_pickup_days=1.0)

    assert estimate.estimated_kg == pytest.approx(3.0)
    assert estimate.fill_ratio == pytest.approx(0.03)


def test_pickup_in_the_future_counts_as_zero_days() -> None:
    future = NOW + timedelta(hours=6)

    assert elapsed_days(future, NOW, unknown_pickup_days=1.0) == 0.0
    assert estimate_fill(_bin(days=-1), NOW).estimated_kg == 0.0


def test_naive_timestamps_are_treated_as_utc() -> None:
    naive_pickup = datetime(2024, 5, 9, 12, 0)

    assert elapsed_days(naive_pickup, NOW, unknown_pickup_days=1.0) == pytest.approx(1.0)


@pytest.mark.parametrize(
    "bin_",
    [
        _bin(capacity=-5.0, days=1),
        _bin(rate=-1.0, days=1),
        _bin(lat=95.0, days=1),
        _bin(bin_id="", days=1),
    ],
)
def test_invalid_bins_are_rejected(bin_: Bin) -> None:
    with pytest.raises(ValidationError):
        estimate_fill(bin_, NOW)
