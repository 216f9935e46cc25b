"""Dispatch endpoints: optimization, plan reads, directions and collections."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...errors import NotFoundError, ValidationError
from ...schemas.dispatch import (
    CollectionEventModel,
    CollectionRequest,
    CollectionResponse,
    DirectionsModel,
    FleetSummaryModel,
    OptimizeRequest,
    RoutePlanModel,
)
from ...services.outputs.plan_formatter import directions_to_json, plan_to_json
from ...services.routing.service import DispatchService, get_dispatch_service

router = APIRouter(prefix="/dispatch", tags=["dispatch"])

RETRY_MESSAGE = "Unable to optimize route, please retry"


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("/optimize", response_model=RoutePlanModel, status_code=status.HTTP_200_OK)
def optimize(payload: OptimizeRequest, service: DispatchService = Depends(get_dispatch_service)) -> RoutePlanModel:
    try:
        plan = service.optimize(
            payload.zone,
            truck_id=payload.truck_id,
            threshold=payload.threshold,
            high_priority_threshold=payload.high_priority_threshold,
            truck_capacity_kg=payload.truck_capacity_kg,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error optimizing route for zone {payload.zone}: {exc}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=RETRY_MESSAGE) from exc
    return RoutePlanModel(**plan_to_json(plan))


@router.get("/zones/{zone}/plan", response_model=RoutePlanModel)
def get_zone_plan(zone: str, service: DispatchService = Depends(get_dispatch_service)) -> RoutePlanModel:
    try:
        plan = service.get_plan(zone)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return RoutePlanModel(**plan_to_json(plan))


@router.get("/trucks/{truck_id}/plan", response_model=RoutePlanModel)
def get_truck_plan(truck_id: str, service: DispatchService = Depends(get_dispatch_service)) -> RoutePlanModel:
    """Today's route for a truck, as polled by the crew view."""
    try:
        plan = service.get_plan_for_truck(truck_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return RoutePlanModel(**plan_to_json(plan))


@router.get("/trucks/{truck_id}/directions", response_model=DirectionsModel)
def get_directions(
    truck_id: str,
    fallback: bool = Query(default=False, description="Serve straight-line directions while road data is missing."),
    service: DispatchService = Depends(get_dispatch_service),
) -> DirectionsModel:
    try:
        result = service.get_directions(truck_id, allow_fallback=fallback)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return DirectionsModel(**directions_to_json(result))


@router.post("/trucks/{truck_id}/directions/refresh", status_code=status.HTTP_202_ACCEPTED)
def refresh_directions(truck_id: str, service: DispatchService = Depends(get_dispatch_service)) -> dict:
    try:
        future = service.refresh_directions(truck_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return {"truck_id": truck_id, "scheduled": future is not None}


@router.post("/collections", response_model=CollectionResponse)
def mark_collected(payload: CollectionRequest, service: DispatchService = Depends(get_dispatch_service)) -> CollectionResponse:
    try:
        outcome = service.mark_collected(
            payload.bin_id,
            payload.truck_id,
            zone=payload.zone,
            notes=payload.notes,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return CollectionResponse(
        already_visited=outcome.already_visited,
        plan=RoutePlanModel(**plan_to_json(outcome.plan)),
    )


@router.get("/collections", response_model=List[CollectionEventModel])
def list_collections(
    zone: Optional[str] = Query(default=None),
    service: DispatchService = Depends(get_dispatch_service),
) -> List[CollectionEventModel]:
    return [CollectionEventModel(**asdict(event)) for event in service.collection_events(zone)]


@router.get("/summary", response_model=FleetSummaryModel)
def fleet_summary(service: DispatchService = Depends(get_dispatch_service)) -> FleetSummaryModel:
    try:
        summary = service.fleet_summary()
    except Exception as exc:
        logging.exception(f"Error computing fleet summary: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to load fleet summary, please retry",
        ) from exc
    return FleetSummaryModel(**asdict(summary))
