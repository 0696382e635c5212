# arrivals/services/shape_builder.py
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence

from arrivals.domain.errors import ShapeValidationError
from arrivals.domain.models import Coordinate, RouteShape, ShapePoint, ShapeSegment
from arrivals.services.geometry import haversine_m

log = logging.getLogger("shape_builder")


def _validate(shape_id: str, raw_points: Sequence[ShapePoint]) -> None:
    if not raw_points:
        raise ShapeValidationError(f"shape {shape_id!r} has no points")
    for pt in raw_points:
        if not pt.coordinate.is_valid():
            raise ShapeValidationError(
                f"shape {shape_id!r} seq={pt.sequence} coordinate out of range "
                f"({pt.coordinate.latitude}, {pt.coordinate.longitude})"
            )


def build_shape(shape_id: str, raw_points: Sequence[ShapePoint]) -> RouteShape:
    """Turn the raw points of one shape into a RouteShape.

    Points are ordered by sequence (stable for ties) and consecutive
    duplicates are collapsed so no segment has zero length.
    Raises ShapeValidationError for an empty list or an out-of-range point.
    """
    _validate(shape_id, raw_points)

    ordered = sorted(raw_points, key=lambda p: p.sequence)
    points: list[Coordinate] = []
    for pt in ordered:
        c = pt.coordinate
        if points and points[-1] == c:
            continue
        points.append(c)

    segments: list[ShapeSegment] = []
    cum_m = 0.0
    for a, b in zip(points, points[1:], strict=False):
        d = haversine_m(a, b)
        cum_m += d
        segments.append(ShapeSegment(start=a, end=b, distance_m=d, cumulative_distance_m=cum_m))

    total = segments[-1].cumulative_distance_m if segments else 0.0
    return RouteShape(
        id=shape_id,
        points=tuple(points),
        segments=tuple(segments),
        total_distance_m=total,
    )


def group_by_shape(points: Iterable[ShapePoint]) -> dict[str, list[ShapePoint]]:
    grouped: dict[str, list[ShapePoint]] = {}
    for pt in points:
        grouped.setdefault(pt.shape_id, []).append(pt)
    return grouped


def build_all_shapes(
    raw_points_by_shape_id: Mapping[str, Sequence[ShapePoint]],
) -> dict[str, RouteShape]:
    out: dict[str, RouteShape] = {}
    dropped = 0
    for sid, pts in raw_points_by_shape_id.items():
        try:
            out[sid] = build_shape(sid, pts)
        except ShapeValidationError as e:
            dropped += 1
            log.warning("shape_dropped id=%s reason=%s", sid, e)
    if dropped:
        log.info("build_all_shapes built=%s dropped=%s", len(out), dropped)
    return out
