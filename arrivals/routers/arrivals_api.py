# arrivals/routers/arrivals_api.py
from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from arrivals.domain.models import Coordinate, OrderedStopsWithDistances, StopOnTrip
from arrivals.services.arrival_estimator import PRECISION_M
from arrivals.services.arrival_times import arrival_status, eta_minutes, with_eta

router = APIRouter(tags=["arrivals"])


class CoordinateIn(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    def to_domain(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


class StopIn(BaseModel):
    stop_id: str
    sequence: int
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class EstimateRequest(BaseModel):
    vehicle: CoordinateIn
    target_stop: CoordinateIn
    target_stop_id: str | None = None
    shape_id: str | None = None
    stops: list[StopIn] = Field(default_factory=list)


@router.post("/api/arrivals/estimate")
def estimate_arrival(request: Request, body: EstimateRequest):
    cache = request.app.state.shape_cache
    estimator = request.app.state.estimator

    shape = cache.get_shape(body.shape_id) if body.shape_id else None
    context = None
    if body.stops:
        context = OrderedStopsWithDistances.from_stops(
            StopOnTrip(
                stop_id=s.stop_id,
                sequence=s.sequence,
                coordinate=Coordinate(latitude=s.latitude, longitude=s.longitude),
            )
            for s in body.stops
        )

    est = estimator.estimate(
        body.vehicle.to_domain(),
        body.target_stop.to_domain(),
        shape,
        context,
        target_stop_id=body.target_stop_id,
    )
    est = with_eta(est)
    out = est.as_dict()
    out["eta_minutes"] = eta_minutes(est)
    out["status"] = arrival_status(est)
    out["precision_m"] = PRECISION_M.get(est.confidence)
    out["shape_found"] = shape is not None
    out["shapes_fresh"] = cache.is_fresh()
    return out
