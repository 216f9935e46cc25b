import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from wastedispatch.errors import CollaboratorUnavailable, NotFoundError, ValidationError
from wastedispatch.models.domain import Bin, Depot, Zone
from wastedispatch.persistence.filesystem import FileStorage
from wastedispatch.persistence.plans import PlanStore
from wastedispatch.services.routing import directions as directions_module
from wastedispatch.services.routing import service as service_module
from wastedispatch.services.routing.models import PlanState
from wastedispatch.services.routing.service import DispatchService

NOW = datetime(2024, 5, 10, 6, 0, tzinfo=timezone.utc)
ZONES = (
    Zone(name="North", depot=Depot(latitude=0.0, longitude=0.0)),
    Zone(name="South", depot=Depot(latitude=1.0, longitude=1.0)),
)


def _bin(bin_id: str, zone: str, lat: float, lon: float, days: float) -> Bin:
    return Bin(
        bin_id=bin_id,
        zone=zone,
        latitude=lat,
        longitude=lon,
        capacity_kg=100.0,
        last_pickup_at=NOW - timedelta(days=days),
        est_rate_kg_per_day=10.0,
    )


BINS = (
    _bin("N-FAR", "North", 0.0, 0.02, days=9),
    _bin("N-NEAR", "North", 0.0, 0.01, days=7),
    _bin("N-LOW", "North", 0.0, 0.03, days=3),
    _bin("S-1", "South", 1.0, 1.01, days=8),
)


def _bins_for(zone: Zone) -> list[Bin]:
    return [bin_ for bin_ in BINS if bin_.zone == zone.name]


class DummyOSRM:
    def route(self, coordinates):
        return {
            "distance": 4200.0,
            "duration": 900.0,
            "geometry": {"type": "LineString", "coordinates": [[lon, lat] for lat, lon in coordinates]},
        }


class TimeoutOSRM:
    def route(self, coordinates):
        raise CollaboratorUnavailable("OSRM route request timed out")


def _unconfigured_osrm():
    raise ValueError("OSRM base URL is not configured.")


@pytest.fixture(autouse=True)
def no_osrm(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(directions_module, "OSRMClient", _unconfigured_osrm)


def _make_service(**overrides) -> DispatchService:
    options = dict(
        zones_loader=lambda: ZONES,
        bins_loader=_bins_for,
        bin_counter=lambda: len(BINS),
        fleet=("TRUCK-01", "TRUCK-02"),
        refinement="none",
        directions_workers=2,
        persist_snapshots=False,
    )
    options.update(overrides)
    return DispatchService(**options)


@pytest.fixture
def service():
    svc = _make_service()
    yield svc
    svc.shutdown()


def _wait_for_directions(svc: DispatchService, truck_id: str):
    future = svc.directions_future(truck_id)
    assert future is not None
    return future.result(timeout=5)


def test_optimize_selects_ranks_and_sequences(service: DispatchService) -> None:
    plan = service.optimize("North", threshold=0.6, high_priority_threshold=0.45, now=NOW)

    assert [stop.bin_id for stop in plan.stops] == ["N-NEAR", "N-FAR"]
    assert plan.truck_id == "TRUCK-01"
    assert plan.load_kg == pytest.approx(160.0)
    assert plan.distance_km > 0
    assert plan.summary.total_bins == 3
    assert plan.summary.considered_bins == 2
    assert plan.summary.high_priority_bins == 2
    assert service.plan_state("North") is PlanState.ACTIVE
    assert service.get_plan("North").plan_id == plan.plan_id


def test_capacity_bounds_the_plan(service: DispatchService) -> None:
    plan = service.optimize("North", threshold=0.6, truck_capacity_kg=80.0, now=NOW)

    assert [stop.bin_id for stop in plan.stops] == ["N-NEAR"]
    assert sum(stop.est_kg for stop in plan.stops) <= 80.0


def test_zone_names_resolve_case_insensitively(service: DispatchService) -> None:
    plan = service.optimize("  north ", now=NOW)

    assert plan.zone == "North"


def test_unknown_zone_is_rejected_without_state_change(service: DispatchService) -> None:
    with pytest.raises(ValidationError):
        service.optimize("Atlantis", now=NOW)

    with pytest.raises(NotFoundError):
        service.get_plan("Atlantis")
    assert service.fleet_summary().planned_zones == 0


def test_invalid_threshold_is_rejected_before_commit(service: DispatchService) -> None:
    with pytest.raises(ValidationError):
        service.optimize("North", threshold=1.2, now=NOW)

    assert service.plan_state("North") is PlanState.NO_PLAN


def test_osrm_timeout_still_returns_plan_and_directions_follow_later(
    service: DispatchService, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(directions_module, "OSRMClient", lambda: TimeoutOSRM())

    plan = service.optimize("North", now=NOW)

    assert plan.stops
    assert plan.distance_km > 0
    assert _wait_for_directions(service, plan.truck_id) is None
    with pytest.raises(NotFoundError):
        service.get_directions(plan.truck_id)
    assert service.get_directions(plan.truck_id, allow_fallback=True).source == "fallback"

    monkeypatch.setattr(directions_module, "OSRMClient", lambda: DummyOSRM())
    service.refresh_directions(plan.truck_id).result(timeout=5)

    directions = service.get_directions(plan.truck_id)
    assert directions.source == "osrm"
    assert directions.plan_id == plan.plan_id
    assert directions.distance_km == pytest.approx(4.2)


def test_directions_for_empty_plan_are_not_found(service: DispatchService) -> None:
    plan = service.optimize("North", threshold=1.0, now=NOW)

    assert plan.stops == []
    assert service.plan_state("North") is PlanState.COMPLETE
    assert service.directions_future(plan.truck_id) is None
    with pytest.raises(NotFoundError):
        service.get_directions(plan.truck_id, allow_fallback=True)


def test_slow_directions_for_replaced_plan_are_discarded(
    service: DispatchService, monkeypatch: pytest.MonkeyPatch
) -> None:
    entered = threading.Event()
    release = threading.Event()
    calls = []
    calls_lock = threading.Lock()

    class GatedOSRM(DummyOSRM):
        def route(self, coordinates):
            with calls_lock:
                calls.append(coordinates)
                first = len(calls) == 1
            if first:
                entered.set()
                release.wait(5)
            return super().route(coordinates)

    monkeypatch.setattr(directions_module, "OSRMClient", lambda: GatedOSRM())

    first_plan = service.optimize("North", now=NOW)
    first_future = service.directions_future(first_plan.truck_id)
    assert entered.wait(5)

    second_plan = service.optimize("North", now=NOW)
    assert _wait_for_directions(service, second_plan.truck_id) is not None

    release.set()
    assert first_future.result(timeout=5) is None
    assert service.get_directions(second_plan.truck_id).plan_id == second_plan.plan_id


def test_mark_collected_progresses_to_complete(service: DispatchService) -> None:
    plan = service.optimize("North", now=NOW)
    later = NOW + timedelta(hours=2)

    first = service.mark_collected("N-NEAR", plan.truck_id, notes="lid damaged", now=later)
    assert first.already_visited is False
    assert [stop.visited for stop in first.plan.stops] == [True, False]
    assert service.plan_state("North") is PlanState.ACTIVE

    repeat = service.mark_collected("N-NEAR", plan.truck_id, now=later + timedelta(minutes=1))
    assert repeat.already_visited is True
    assert repeat.plan.stops[0].visited_at == later

    service.mark_collected("N-FAR", plan.truck_id, now=later)
    assert service.plan_state("North") is PlanState.COMPLETE

    events = service.collection_events("North")
    assert [(event.bin_id, event.duplicate) for event in events] == [
        ("N-NEAR", False),
        ("N-NEAR", True),
        ("N-FAR", False),
    ]
    assert events[0].notes == "lid damaged"


def test_mark_collected_unknown_bin_leaves_plan_unchanged(service: DispatchService) -> None:
    plan = service.optimize("North", now=NOW)

    with pytest.raises(NotFoundError, match="N-LOW"):
        service.mark_collected("N-LOW", plan.truck_id, now=NOW)

    assert [stop.visited for stop in service.get_plan("North").stops] == [False, False]
    assert service.collection_events() == []


def test_mark_collected_for_truck_without_plan(service: DispatchService) -> None:
    with pytest.raises(NotFoundError, match="TRUCK-09"):
        service.mark_collected("N-NEAR", "TRUCK-09", now=NOW)


def test_returned_plans_are_copies(service: DispatchService) -> None:
    plan = service.optimize("North", now=NOW)
    plan.stops[0].visited = True

    assert service.get_plan("North").stops[0].visited is False


def test_reoptimize_replaces_plan_and_keeps_truck(service: DispatchService) -> None:
    first = service.optimize("North", now=NOW)
    service.mark_collected("N-NEAR", first.truck_id, now=NOW)

    second = service.optimize("North", now=NOW)

    assert second.plan_id != first.plan_id
    assert second.truck_id == first.truck_id
    assert all(not stop.visited for stop in second.stops)
    assert service.get_plan_for_truck(first.truck_id).plan_id == second.plan_id


def test_trucks_are_not_shared_between_active_zones(service: DispatchService) -> None:
    north = service.optimize("North", now=NOW)
    south = service.optimize("South", now=NOW)

    assert north.truck_id == "TRUCK-01"
    assert south.truck_id == "TRUCK-02"
    with pytest.raises(ValidationError, match="TRUCK-01"):
        service.optimize("South", truck_id="TRUCK-01", now=NOW)


def test_fleet_exhaustion_and_release_after_completion() -> None:
    svc = _make_service(fleet=("TRUCK-01",))
    try:
        north = svc.optimize("North", now=NOW)
        with pytest.raises(ValidationError, match="No available trucks"):
            svc.optimize("South", now=NOW)

        for stop in north.stops:
            svc.mark_collected(stop.bin_id, north.truck_id, now=NOW)

        south = svc.optimize("South", now=NOW + timedelta(minutes=1))
        assert south.truck_id == "TRUCK-01"
        assert svc.get_plan_for_truck("TRUCK-01").zone == "South"
    finally:
        svc.shutdown()


def test_fleet_summary_counts(service: DispatchService) -> None:
    service.optimize("North", now=NOW)

    summary = service.fleet_summary()

    assert summary.total_zones == 2
    assert summary.planned_zones == 1
    assert summary.active_zones == 1
    assert summary.fleet_size == 2
    assert summary.engaged_trucks == 1
    assert summary.available_trucks == 1
    assert summary.total_bins == 4
    assert summary.engaged_truck_ids == ["TRUCK-01"]


def test_plan_state_reports_planning_while_optimizing() -> None:
    loading = threading.Event()
    release = threading.Event()

    def slow_bins(zone: Zone) -> list[Bin]:
        loading.set()
        release.wait(5)
        return _bins_for(zone)

    svc = _make_service(bins_loader=slow_bins)
    try:
        worker = threading.Thread(target=svc.optimize, args=("North",), kwargs={"now": NOW})
        worker.start()
        assert loading.wait(5)
        assert svc.plan_state("North") is PlanState.PLANNING
        release.set()
        worker.join(5)
        assert svc.plan_state("North") is PlanState.ACTIVE
    finally:
        release.set()
        svc.shutdown()


def test_concurrent_confirmations_and_optimizations(service: DispatchService) -> None:
    plan = service.optimize("North", now=NOW)
    errors: list[Exception] = []
    collect = {"zone": "North", "now": NOW}

    def run(target, *args, **kwargs) -> None:
        try:
            target(*args, **kwargs)
        except Exception as exc:
            errors.append(exc)

    threads = [
        threading.Thread(target=run, args=(service.mark_collected, "N-NEAR", plan.truck_id), kwargs=collect),
        threading.Thread(target=run, args=(service.mark_collected, "N-FAR", plan.truck_id), kwargs=collect),
        threading.Thread(target=run, args=(service.mark_collected, "N-NEAR", plan.truck_id), kwargs=collect),
    ]
    threads += [
        threading.Thread(target=run, args=(service.optimize, "South"), kwargs={"now": NOW}) for _ in range(3)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert errors == []
    north = service.get_plan("North")
    assert all(stop.visited for stop in north.stops)
    assert service.plan_state("North") is PlanState.COMPLETE
    events = service.collection_events("North")
    assert len(events) == 3
    assert sum(1 for event in events if event.duplicate) == 1
    assert [stop.bin_id for stop in service.get_plan("South").stops] == ["S-1"]


def test_snapshots_are_written_when_enabled(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    original_storage = service_module.FileStorage
    monkeypatch.setattr(service_module, "FileStorage", lambda: original_storage(root=tmp_path))
    svc = _make_service(persist_snapshots=True)
    try:
        svc.optimize("North", now=NOW)
    finally:
        svc.shutdown()

    run_dirs = list((tmp_path / "outputs").iterdir())
    assert len(run_dirs) == 1
    assert (run_dirs[0] / "plan.json").exists()
    assert "N-NEAR" in (run_dirs[0] / "stops.csv").read_text(encoding="utf-8")


def test_file_storage_sanitizes_run_prefix(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)

    run_dir = storage.make_run_directory(prefix="plan North/East")

    assert run_dir.parent == tmp_path / "outputs"
    assert run_dir.name.startswith("plan_North_East_")


def test_reassigned_truck_keeps_directions_when_old_zone_is_replanned(
    service: DispatchService, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(directions_module, "OSRMClient", lambda: DummyOSRM())
    north = service.optimize("North", now=NOW)
    _wait_for_directions(service, north.truck_id)
    for stop in north.stops:
        service.mark_collected(stop.bin_id, north.truck_id, now=NOW)

    south = service.optimize("South", now=NOW + timedelta(minutes=1))
    assert south.truck_id == north.truck_id
    assert _wait_for_directions(service, south.truck_id).plan_id == south.plan_id

    replanned = service.optimize("North", now=NOW + timedelta(minutes=2))

    assert replanned.truck_id == "TRUCK-02"
    assert service.get_plan_for_truck("TRUCK-01").plan_id == south.plan_id
    assert service.get_directions("TRUCK-01").plan_id == south.plan_id
    assert service.refresh_directions("TRUCK-01") is None
    assert _wait_for_directions(service, "TRUCK-02").plan_id == replanned.plan_id


def test_collection_log_keeps_most_recent_events() -> None:
    svc = _make_service(store=PlanStore(max_events=2))
    try:
        plan = svc.optimize("North", now=NOW)
        svc.mark_collected("N-NEAR", plan.truck_id, now=NOW)
        svc.mark_collected("N-NEAR", plan.truck_id, now=NOW)
        svc.mark_collected("N-FAR", plan.truck_id, now=NOW)

        events = svc.collection_events()
        assert [(event.bin_id, event.duplicate) for event in events] == [("N-NEAR", True), ("N-FAR", False)]
    finally:
        svc.shutdown()


def test_reads_without_zone_registry_report_missing_plan() -> None:
    def missing_registry():
        raise FileNotFoundError("Zone workbook not found: data/zones.xlsx")

    svc = _make_service(zones_loader=missing_registry)
    try:
        with pytest.raises(NotFoundError):
            svc.get_plan("North")
        assert svc.plan_state("North") is PlanState.NO_PLAN
        with pytest.raises(NotFoundError):
            svc.mark_collected("N-NEAR", "TRUCK-01", zone="North", now=NOW)
    finally:
        svc.shutdown()
