# arrivals/services/geometry.py
from __future__ import annotations

import math

from arrivals.domain.models import Coordinate, RouteShape, SegmentProjection, ShapeProjection

EARTH_RADIUS_M = 6371000.0


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in meters between two coordinates."""
    if a.latitude == b.latitude and a.longitude == b.longitude:
        return 0.0
    dphi = math.radians(b.latitude - a.latitude)
    dlmb = math.radians(b.longitude - a.longitude)
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, h)))


def _project_fraction(p: Coordinate, a: Coordinate, b: Coordinate) -> float | None:
    # Equirectangular plane around the segment's mean latitude
    mean_lat_rad = math.radians((a.latitude + b.latitude) / 2.0)
    k = math.cos(mean_lat_rad) * EARTH_RADIUS_M
    ax = math.radians(a.longitude) * k
    ay = math.radians(a.latitude) * EARTH_RADIUS_M
    bx = math.radians(b.longitude) * k
    by = math.radians(b.latitude) * EARTH_RADIUS_M
    px = math.radians(p.longitude) * k
    py = math.radians(p.latitude) * EARTH_RADIUS_M

    dx = bx - ax
    dy = by - ay
    denom = dx * dx + dy * dy
    if denom <= 0:
        return None
    return ((px - ax) * dx + (py - ay) * dy) / denom


def project_point_to_segment(
    p: Coordinate, seg_start: Coordinate, seg_end: Coordinate
) -> SegmentProjection:
    frac = _project_fraction(p, seg_start, seg_end)
    if frac is None:
        # Degenerate segment: both ends are the same point
        return SegmentProjection(
            projected=seg_start,
            fraction_along_segment=0.0,
            distance_from_path=haversine_m(p, seg_start),
        )

    t = min(1.0, max(0.0, frac))
    if t == 0.0:
        projected = seg_start
    elif t == 1.0:
        projected = seg_end
    else:
        projected = Coordinate(
            latitude=seg_start.latitude + (seg_end.latitude - seg_start.latitude) * t,
            longitude=seg_start.longitude + (seg_end.longitude - seg_start.longitude) * t,
        )
    return SegmentProjection(
        projected=projected,
        fraction_along_segment=t,
        distance_from_path=haversine_m(p, projected),
    )


def project_point_to_shape(p: Coordinate, shape: RouteShape) -> ShapeProjection | None:
    """Closest location on ``shape`` to ``p``, or None for shapes without segments.

    Ties keep the earliest segment.
    """
    if not shape.segments:
        return None

    best_idx = -1
    best: SegmentProjection | None = None
    for i, seg in enumerate(shape.segments):
        proj = project_point_to_segment(p, seg.start, seg.end)
        if best is None or proj.distance_from_path < best.distance_from_path:
            best = proj
            best_idx = i

    seg = shape.segments[best_idx]
    along = seg.start_distance_m + best.fraction_along_segment * seg.distance_m
    return ShapeProjection(
        segment_index=best_idx,
        fraction_along_segment=best.fraction_along_segment,
        distance_from_path=best.distance_from_path,
        distance_along_shape=along,
    )
