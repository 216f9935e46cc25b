"""Serializers for route plans and directions."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict

from ..routing.models import DirectionsResult, RoutePlan
from ..routing.tracker import completed_stops, efficiency_gain_pct, pending_stops, plan_state


def _round_km(value: float) -> float:
    return round(value, 2)


def plan_to_json(plan: RoutePlan) -> dict:
    summary = plan.summary
    return {
        "plan_id": plan.plan_id,
        "zone": plan.zone,
        "truck_id": plan.truck_id,
        "state": plan_state(plan).value,
        "depot": {"lat": plan.depot.latitude, "lon": plan.depot.longitude},
        "stops": [
            {
                "bin_id": stop.bin_id,
                "sequence": stop.sequence,
                "lat": stop.latitude,
                "lon": stop.longitude,
                "est_kg": stop.est_kg,
                "visited": stop.visited,
                "visited_at": stop.visited_at.isoformat() if stop.visited_at else None,
            }
            for stop in plan.stops
        ],
        "load_kg": plan.load_kg,
        "distance_km": _round_km(plan.distance_km),
        "summary": {
            "threshold": summary.threshold,
            "high_priority_threshold": summary.high_priority_threshold,
            "total_bins": summary.total_bins,
            "considered_bins": summary.considered_bins,
            "high_priority_bins": summary.high_priority_bins,
            "baseline_distance_km": _round_km(summary.baseline_distance_km),
            "truck_capacity_kg": summary.truck_capacity_kg,
            "completed_stops": completed_stops(plan),
            "pending_stops": pending_stops(plan),
            "efficiency_gain_pct": efficiency_gain_pct(plan),
        },
        "created_at": plan.created_at.isoformat(),
        "updated_at": plan.updated_at.isoformat(),
    }


def plan_to_csv(plan: RoutePlan) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "zone",
        "truck_id",
        "sequence",
        "bin_id",
        "lat",
        "lon",
        "est_kg",
        "visited",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for stop in plan.stops:
        writer.writerow(
            {
                "zone": plan.zone,
                "truck_id": plan.truck_id,
                "sequence": stop.sequence,
                "bin_id": stop.bin_id,
                "lat": stop.latitude,
                "lon": stop.longitude,
                "est_kg": stop.est_kg,
                "visited": stop.visited,
            }
        )
    return buffer.getvalue()


def directions_to_json(result: DirectionsResult) -> dict:
    payload = asdict(result)
    payload["distance_km"] = _round_km(result.distance_km)
    payload["duration_min"] = round(result.duration_min)
    return payload
