# arrivals/services/shape_snapshot.py
from __future__ import annotations

import json
import math
from collections.abc import Mapping

from arrivals.domain.errors import SnapshotError
from arrivals.domain.models import Coordinate, RouteShape, ShapeSegment

SNAPSHOT_VERSION = 1

# ---------------- Content hash (FNV-1a, 32 bit) ----------------

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193


def _fnv1a(h: int, text: str) -> int:
    for b in text.encode("utf-8"):
        h ^= b
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h


def shapes_content_hash(shapes: Mapping[str, RouteShape]) -> str:
    """Order-independent fingerprint of the shape geometry.

    Shapes are visited sorted by id; coordinates use 6 decimals and segment
    distances 3 decimals.
    """
    if not shapes:
        return ""
    h = _FNV_OFFSET_BASIS
    for sid in sorted(shapes):
        shape = shapes[sid]
        h = _fnv1a(h, sid)
        for p in shape.points:
            h = _fnv1a(h, f"{p.latitude:.6f}")
            h = _fnv1a(h, f"{p.longitude:.6f}")
        for seg in shape.segments:
            h = _fnv1a(h, f"{seg.distance_m:.3f}")
    return format(h, "x")


# ---------------- Map <-> list of pairs ----------------


def shape_to_dict(shape: RouteShape) -> dict:
    return {
        "id": shape.id,
        "points": [p.as_pair() for p in shape.points],
        "segments": [
            {
                "start": seg.start.as_pair(),
                "end": seg.end.as_pair(),
                "distance_m": seg.distance_m,
                "cumulative_distance_m": seg.cumulative_distance_m,
            }
            for seg in shape.segments
        ],
        "total_distance_m": shape.total_distance_m,
    }


def to_persistable(
    shapes: Mapping[str, RouteShape],
    *,
    last_updated_at_ms: int | None,
    content_hash: str | None,
) -> dict:
    return {
        "version": SNAPSHOT_VERSION,
        "state": {
            "last_updated_at_ms": last_updated_at_ms,
            "content_hash": content_hash,
            "shapes": [[sid, shape_to_dict(shape)] for sid, shape in shapes.items()],
        },
    }


def _number(v, what: str) -> float:
    if isinstance(v, bool) or not isinstance(v, int | float) or not math.isfinite(v):
        raise SnapshotError(f"{what} is not a finite number: {v!r}")
    return float(v)


def _coord(v, what: str) -> Coordinate:
    if not isinstance(v, list | tuple) or len(v) != 2:
        raise SnapshotError(f"{what} is not a [lat, lon] pair: {v!r}")
    c = Coordinate(latitude=_number(v[0], what), longitude=_number(v[1], what))
    if not c.is_valid():
        raise SnapshotError(f"{what} out of range: {v!r}")
    return c


def _shape_from_dict(sid: str, d) -> RouteShape:
    if not isinstance(d, dict):
        raise SnapshotError(f"shape {sid!r} is not an object")
    if d.get("id") != sid:
        raise SnapshotError(f"shape id mismatch: key={sid!r} id={d.get('id')!r}")
    raw_points = d.get("points")
    raw_segments = d.get("segments")
    if not isinstance(raw_points, list) or not isinstance(raw_segments, list):
        raise SnapshotError(f"shape {sid!r} has no points/segments lists")

    points = tuple(_coord(p, f"shape {sid!r} point") for p in raw_points)
    if len(raw_segments) != max(0, len(points) - 1):
        raise SnapshotError(
            f"shape {sid!r} has {len(raw_segments)} segments for {len(points)} points"
        )

    segments: list[ShapeSegment] = []
    prev_cum = 0.0
    for i, s in enumerate(raw_segments):
        if not isinstance(s, dict):
            raise SnapshotError(f"shape {sid!r} segment {i} is not an object")
        seg = ShapeSegment(
            start=_coord(s.get("start"), f"shape {sid!r} segment {i} start"),
            end=_coord(s.get("end"), f"shape {sid!r} segment {i} end"),
            distance_m=_number(s.get("distance_m"), f"shape {sid!r} segment {i} distance"),
            cumulative_distance_m=_number(
                s.get("cumulative_distance_m"), f"shape {sid!r} segment {i} cumulative"
            ),
        )
        if seg.start != points[i] or seg.end != points[i + 1]:
            raise SnapshotError(f"shape {sid!r} segment {i} does not match its points")
        if seg.distance_m < 0 or seg.cumulative_distance_m < prev_cum:
            raise SnapshotError(f"shape {sid!r} segment {i} breaks cumulative ordering")
        prev_cum = seg.cumulative_distance_m
        segments.append(seg)

    total = _number(d.get("total_distance_m"), f"shape {sid!r} total")
    expected = segments[-1].cumulative_distance_m if segments else 0.0
    if total != expected:
        raise SnapshotError(f"shape {sid!r} total {total} != last cumulative {expected}")
    return RouteShape(id=sid, points=points, segments=tuple(segments), total_distance_m=total)


def from_persistable(data) -> tuple[dict[str, RouteShape], int | None, str | None]:
    """Rebuild ``(shapes, last_updated_at_ms, content_hash)``.

    Raises SnapshotError when the structure does not validate.
    """
    if not isinstance(data, dict) or data.get("version") != SNAPSHOT_VERSION:
        raise SnapshotError("unknown snapshot version")
    state = data.get("state")
    if not isinstance(state, dict):
        raise SnapshotError("snapshot has no state")

    updated = state.get("last_updated_at_ms")
    if updated is not None and (isinstance(updated, bool) or not isinstance(updated, int)):
        raise SnapshotError(f"bad last_updated_at_ms: {updated!r}")
    content_hash = state.get("content_hash")
    if content_hash is not None and not isinstance(content_hash, str):
        raise SnapshotError(f"bad content_hash: {content_hash!r}")

    pairs = state.get("shapes")
    if not isinstance(pairs, list):
        raise SnapshotError("shapes must be a list of [id, shape] pairs")
    shapes: dict[str, RouteShape] = {}
    for pair in pairs:
        if not isinstance(pair, list | tuple) or len(pair) != 2 or not isinstance(pair[0], str):
            raise SnapshotError(f"bad shape entry: {pair!r:.80}")
        sid, body = pair
        if sid in shapes:
            raise SnapshotError(f"duplicate shape id {sid!r}")
        shapes[sid] = _shape_from_dict(sid, body)
    return shapes, updated, content_hash


def dumps(data: dict) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def loads(blob: str) -> dict:
    try:
        return json.loads(blob)
    except (TypeError, ValueError) as e:
        raise SnapshotError(f"unparseable snapshot: {e}") from e
