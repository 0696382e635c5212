# arrivals/domain/models.py
from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class EstimateMethod(str, Enum):
    SHAPE_PROJECTION = "SHAPE_PROJECTION"
    STOP_SEGMENTS = "STOP_SEGMENTS"


class CacheStatus(str, Enum):
    EMPTY = "EMPTY"
    LOADING = "LOADING"
    READY = "READY"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        lat, lon = self.latitude, self.longitude
        if not (math.isfinite(lat) and math.isfinite(lon)):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0

    def as_pair(self) -> list[float]:
        return [self.latitude, self.longitude]


@dataclass(frozen=True)
class ShapePoint:
    shape_id: str
    sequence: int
    coordinate: Coordinate


@dataclass(frozen=True)
class ShapeSegment:
    start: Coordinate
    end: Coordinate
    distance_m: float
    cumulative_distance_m: float  # along the shape up to and including `end`

    @property
    def start_distance_m(self) -> float:
        return self.cumulative_distance_m - self.distance_m


@dataclass(frozen=True)
class RouteShape:
    id: str
    points: tuple[Coordinate, ...]
    segments: tuple[ShapeSegment, ...]
    total_distance_m: float

    @property
    def has_segments(self) -> bool:
        return bool(self.segments)

    def point_count(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class SegmentProjection:
    projected: Coordinate
    fraction_along_segment: float
    distance_from_path: float


@dataclass(frozen=True)
class ShapeProjection:
    segment_index: int
    fraction_along_segment: float
    distance_from_path: float
    distance_along_shape: float


@dataclass(frozen=True)
class StopOnTrip:
    stop_id: str
    coordinate: Coordinate
    sequence: int = 0


@dataclass(frozen=True)
class OrderedStopsWithDistances:
    """Stops of one trip in travel order.

    ``distances_m[i]`` is the haversine distance between ``stops[i]`` and
    ``stops[i + 1]``.
    """

    stops: tuple[StopOnTrip, ...] = ()
    distances_m: tuple[float, ...] = ()

    @classmethod
    def from_stops(cls, stops) -> OrderedStopsWithDistances:
        from arrivals.services.geometry import haversine_m

        ordered = tuple(sorted(stops, key=lambda s: s.sequence))
        dists = tuple(
            haversine_m(a.coordinate, b.coordinate)
            for a, b in zip(ordered, ordered[1:], strict=False)
        )
        return cls(stops=ordered, distances_m=dists)

    def __len__(self) -> int:
        return len(self.stops)

    def index_of(self, stop_id: str) -> int | None:
        sid = (stop_id or "").strip()
        for i, s in enumerate(self.stops):
            if s.stop_id == sid:
                return i
        return None


@dataclass(frozen=True)
class ArrivalEstimate:
    distance_m: float
    confidence: Confidence
    method: EstimateMethod
    eta_seconds: float | None = None
    stops_remaining: int | None = None  # stops strictly between vehicle and target, if known
    passed: bool = False  # vehicle has already left the target stop behind
    off_route: bool = False  # vehicle too far from its route shape

    def with_eta(self, eta_seconds: float | None) -> ArrivalEstimate:
        return replace(self, eta_seconds=eta_seconds)

    def as_dict(self) -> dict:
        return {
            "distance_m": self.distance_m,
            "eta_seconds": self.eta_seconds,
            "confidence": self.confidence.value,
            "method": self.method.value,
            "stops_remaining": self.stops_remaining,
            "passed": self.passed,
            "off_route": self.off_route,
        }
