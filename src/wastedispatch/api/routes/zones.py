"""Zone and bin inventory endpoints."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ...data.inventory import list_bins
from ...data.zone_registry import get_zone, list_zones
from ...errors import ValidationError
from ...models.domain import Zone
from ...schemas.dispatch import BinModel, ZoneModel
from ...services.routing.service import DispatchService, get_dispatch_service

router = APIRouter(prefix="/zones", tags=["zones"])


def _zone_to_model(zone: Zone, service: DispatchService) -> ZoneModel:
    bbox = zone.bbox
    return ZoneModel(
        name=zone.name,
        depot={"lat": zone.depot.latitude, "lon": zone.depot.longitude},
        bbox=[bbox.min_lat, bbox.min_lon, bbox.max_lat, bbox.max_lon] if bbox else None,
        area_sq_km=zone.area_sq_km,
        population=zone.population,
        last_collection_at=zone.last_collection_at,
        plan_state=service.plan_state(zone.name).value,
    )


@router.get("", response_model=List[ZoneModel])
def get_zones(service: DispatchService = Depends(get_dispatch_service)) -> List[ZoneModel]:
    try:
        zones = list_zones()
    except (FileNotFoundError, ValueError) as exc:
        logging.exception(f"Error loading zones: {exc}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Zone registry is unavailable",
        ) from exc
    return [_zone_to_model(zone, service) for zone in zones]


@router.get("/{zone}/bins", response_model=List[BinModel])
def get_zone_bins(zone: str) -> List[BinModel]:
    try:
        zone_ref = get_zone(zone)
        bins = list_bins(zone_ref)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return [
        BinModel(
            bin_id=bin_.bin_id,
            zone=bin_.zone,
            lat=bin_.latitude,
            lon=bin_.longitude,
            capacity_kg=bin_.capacity_kg,
            last_pickup_at=bin_.last_pickup_at,
            est_rate_kg_per_day=bin_.est_rate_kg_per_day,
        )
        for bin_ in bins
    ]
