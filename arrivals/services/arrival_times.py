# arrivals/services/arrival_times.py
from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass

from arrivals.config import settings
from arrivals.domain.models import ArrivalEstimate

AT_STOP = "AT_STOP"
ARRIVING = "ARRIVING"
EN_ROUTE = "EN_ROUTE"
DEPARTED = "DEPARTED"
OFF_ROUTE = "OFF_ROUTE"

# Under a minute away counts as arriving
ARRIVING_WINDOW_S = 60

_STATUS_ORDER = {AT_STOP: 0, ARRIVING: 1, EN_ROUTE: 2, DEPARTED: 3, OFF_ROUTE: 4}


def eta_seconds(
    distance_m: float,
    intermediate_stops: int = 0,
    *,
    speed_kmh: float | None = None,
    dwell_s: int | None = None,
) -> float:
    speed = float(speed_kmh if speed_kmh is not None else settings.AVERAGE_SPEED_KMH)
    dwell = int(dwell_s if dwell_s is not None else settings.DWELL_TIME_S)
    if speed <= 0:
        raise ValueError("speed_kmh must be positive")
    travel = max(0.0, float(distance_m)) / (speed / 3.6)
    return travel + max(0, int(intermediate_stops or 0)) * dwell


def with_eta(
    estimate: ArrivalEstimate,
    *,
    speed_kmh: float | None = None,
    dwell_s: int | None = None,
) -> ArrivalEstimate:
    if estimate.passed:
        return estimate.with_eta(None)
    eta = eta_seconds(
        estimate.distance_m,
        estimate.stops_remaining or 0,
        speed_kmh=speed_kmh,
        dwell_s=dwell_s,
    )
    return estimate.with_eta(eta)


def eta_minutes(estimate: ArrivalEstimate) -> int | None:
    if estimate.eta_seconds is None:
        return None
    if estimate.eta_seconds <= 0:
        return 0
    return int(math.ceil(estimate.eta_seconds / 60))


def arrival_status(estimate: ArrivalEstimate, *, at_stop_m: float | None = None) -> str:
    if estimate.off_route:
        return OFF_ROUTE
    if estimate.passed:
        return DEPARTED
    limit = float(at_stop_m if at_stop_m is not None else settings.AT_STOP_THRESHOLD_M)
    if estimate.distance_m <= limit:
        return AT_STOP
    if estimate.eta_seconds is not None and estimate.eta_seconds < ARRIVING_WINDOW_S:
        return ARRIVING
    return EN_ROUTE


@dataclass(frozen=True)
class VehicleArrival:
    vehicle_id: str
    estimate: ArrivalEstimate
    status: str


def sort_by_arrival(items: Iterable[VehicleArrival]) -> list[VehicleArrival]:
    """Status first, then ETA (unknown last), then vehicle id."""

    def _key(v: VehicleArrival):
        eta = v.estimate.eta_seconds
        return (
            _STATUS_ORDER.get(v.status, len(_STATUS_ORDER)),
            eta is None,
            eta if eta is not None else 0.0,
            v.vehicle_id,
        )

    return sorted(items, key=_key)
