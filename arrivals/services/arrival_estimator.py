# arrivals/services/arrival_estimator.py
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Sequence
from dataclasses import replace

from arrivals.config import settings
from arrivals.domain.models import (
    ArrivalEstimate,
    Confidence,
    Coordinate,
    EstimateMethod,
    OrderedStopsWithDistances,
    RouteShape,
    ShapeProjection,
    StopOnTrip,
)
from arrivals.services.geometry import haversine_m, project_point_to_shape

log = logging.getLogger("arrivals")

# A target coordinate matches a stop of the trip within this radius
STOP_MATCH_TOLERANCE_M = 50.0

# Vehicle to both stops of its segment may exceed the segment length by 50%
SEGMENT_TOLERANCE = 0.5

# Precision communicated to callers per confidence tier (meters)
PRECISION_M = {
    Confidence.HIGH: 50.0,
    Confidence.MEDIUM: 200.0,
    Confidence.LOW: None,
}

_STOP_OFFSETS_MAX = 256


class ArrivalEstimator:
    def __init__(self, off_route_threshold_m: float | None = None):
        self.off_route_threshold_m = float(
            off_route_threshold_m
            if off_route_threshold_m is not None
            else settings.OFF_ROUTE_THRESHOLD_M
        )
        # (shape id, total, points, stops) -> each stop's distance along the shape
        self._stop_offsets: OrderedDict[tuple, tuple[float | None, ...]] = OrderedDict()
        self._stop_offsets_lock = threading.Lock()

    # ---------------- Entry points ----------------
    def estimate(
        self,
        vehicle_position: Coordinate,
        target_stop: Coordinate,
        route_shape: RouteShape | None = None,
        stop_context: OrderedStopsWithDistances | None = None,
        *,
        target_stop_id: str | None = None,
    ) -> ArrivalEstimate:
        off_route = False
        if route_shape is not None and route_shape.has_segments:
            vp = project_point_to_shape(vehicle_position, route_shape)
            if vp is not None and vp.distance_from_path > self.off_route_threshold_m:
                off_route = True
                log.debug(
                    "off_route shape=%s distance_from_path=%.1f threshold=%.1f",
                    route_shape.id,
                    vp.distance_from_path,
                    self.off_route_threshold_m,
                )
            elif vp is not None:
                est = self._estimate_on_shape(vp, target_stop, route_shape, stop_context)
                if est is not None:
                    return est

        est = self._estimate_by_stops(vehicle_position, target_stop, stop_context, target_stop_id)
        return replace(est, off_route=True) if off_route else est

    def estimate_for_trip(
        self,
        vehicle_position: Coordinate,
        target_stop_id: str,
        shape_cache,
        shape_id: str | None,
        stops: Sequence[StopOnTrip],
    ) -> ArrivalEstimate | None:
        """Estimate using the trip's shape from ``shape_cache`` and its stop list.

        Returns None when ``target_stop_id`` is not served by the trip.
        """
        context = OrderedStopsWithDistances.from_stops(stops)
        idx = context.index_of(target_stop_id)
        if idx is None:
            return None
        shape = shape_cache.get_shape(shape_id) if shape_id else None
        return self.estimate(
            vehicle_position,
            context.stops[idx].coordinate,
            shape,
            context,
            target_stop_id=target_stop_id,
        )

    # ---------------- Shape projection ----------------
    def _estimate_on_shape(
        self,
        vp: ShapeProjection,
        target_stop: Coordinate,
        shape: RouteShape,
        stop_context: OrderedStopsWithDistances | None,
    ) -> ArrivalEstimate | None:
        sp = project_point_to_shape(target_stop, shape)
        if sp is None:
            return None

        delta = sp.distance_along_shape - vp.distance_along_shape
        return ArrivalEstimate(
            distance_m=max(0.0, delta),
            confidence=Confidence.HIGH,
            method=EstimateMethod.SHAPE_PROJECTION,
            stops_remaining=self._stops_between(vp, sp, shape, stop_context),
            passed=delta < -STOP_MATCH_TOLERANCE_M,
        )

    def _stops_between(
        self,
        vp: ShapeProjection,
        sp: ShapeProjection,
        shape: RouteShape,
        context: OrderedStopsWithDistances | None,
    ) -> int | None:
        if context is None or not context.stops:
            return None
        lo, hi = vp.distance_along_shape, sp.distance_along_shape
        if hi <= lo:
            return 0
        offsets = self._offsets_for(shape, context)
        return sum(1 for d in offsets if d is not None and lo < d < hi)

    def _offsets_for(
        self, shape: RouteShape, context: OrderedStopsWithDistances
    ) -> tuple[float | None, ...]:
        key = (shape.id, shape.total_distance_m, shape.point_count(), context)
        with self._stop_offsets_lock:
            offsets = self._stop_offsets.get(key)
            if offsets is not None:
                self._stop_offsets.move_to_end(key)
                return offsets

        projected = (project_point_to_shape(s.coordinate, shape) for s in context.stops)
        offsets = tuple(p.distance_along_shape if p is not None else None for p in projected)
        with self._stop_offsets_lock:
            self._stop_offsets[key] = offsets
            if len(self._stop_offsets) > _STOP_OFFSETS_MAX:
                self._stop_offsets.popitem(last=False)
        return offsets

    # ---------------- Stop segments fallback ----------------
    def _estimate_by_stops(
        self,
        vehicle_position: Coordinate,
        target_stop: Coordinate,
        stop_context: OrderedStopsWithDistances | None,
        target_stop_id: str | None,
    ) -> ArrivalEstimate:
        straight = ArrivalEstimate(
            distance_m=haversine_m(vehicle_position, target_stop),
            confidence=Confidence.LOW,
            method=EstimateMethod.STOP_SEGMENTS,
        )
        if stop_context is None or len(stop_context) < 2:
            return straight

        target_idx = None
        if target_stop_id:
            target_idx = stop_context.index_of(target_stop_id)
        if target_idx is None:
            target_idx = _match_stop(stop_context, target_stop)
        if target_idx is None:
            return straight

        seg_idx, seg_sum = _nearest_stop_segment(stop_context, vehicle_position)
        if seg_sum > stop_context.distances_m[seg_idx] * (1 + SEGMENT_TOLERANCE):
            log.debug(
                "vehicle_not_near_stops segment=%s sum=%.1f length=%.1f",
                seg_idx,
                seg_sum,
                stop_context.distances_m[seg_idx],
            )
            return straight

        next_idx = seg_idx + 1
        if target_idx < next_idx:
            # Departed, unless it is still standing at the target
            return ArrivalEstimate(
                distance_m=0.0,
                confidence=Confidence.MEDIUM,
                method=EstimateMethod.STOP_SEGMENTS,
                stops_remaining=0,
                passed=haversine_m(vehicle_position, target_stop) > STOP_MATCH_TOLERANCE_M,
            )

        distance = haversine_m(vehicle_position, stop_context.stops[next_idx].coordinate)
        distance += sum(stop_context.distances_m[next_idx:target_idx])
        return ArrivalEstimate(
            distance_m=distance,
            confidence=Confidence.MEDIUM,
            method=EstimateMethod.STOP_SEGMENTS,
            stops_remaining=target_idx - next_idx,
        )


def _match_stop(context: OrderedStopsWithDistances, target: Coordinate) -> int | None:
    best_idx = None
    best_d = None
    for i, s in enumerate(context.stops):
        d = haversine_m(s.coordinate, target)
        if best_d is None or d < best_d:
            best_idx, best_d = i, d
    if best_d is None or best_d > STOP_MATCH_TOLERANCE_M:
        return None
    return best_idx


def _nearest_stop_segment(
    context: OrderedStopsWithDistances, position: Coordinate
) -> tuple[int, float]:
    """``(i, d)`` for the stop pair (i, i+1) whose endpoints are closest to
    ``position`` in sum, ``d`` being that sum."""
    best_idx = 0
    best_sum = None
    dists = [haversine_m(position, s.coordinate) for s in context.stops]
    for i in range(len(dists) - 1):
        total = dists[i] + dists[i + 1]
        if best_sum is None or total < best_sum:
            best_idx, best_sum = i, total
    return best_idx, best_sum
