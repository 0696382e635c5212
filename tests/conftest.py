import threading

import pytest

from arrivals.domain.errors import ShapesFetchError
from arrivals.domain.models import Coordinate, ShapePoint
from arrivals.services.shape_cache import ShapeCache
from arrivals.services.snapshot_store import MemorySnapshotStore

DAY_MS = 24 * 60 * 60 * 1000
T0_MS = 1_700_000_000_000


def pts(shape_id, coords, start_seq=1, step=1):
    """ShapePoints for ``coords`` given as (lat, lon) tuples."""
    return [
        ShapePoint(
            shape_id=shape_id,
            sequence=start_seq + i * step,
            coordinate=Coordinate(latitude=lat, longitude=lon),
        )
        for i, (lat, lon) in enumerate(coords)
    ]


THREE_POINT_LINE = [(0.0, 0.0), (0.0, 0.001), (0.0, 0.002)]


class FakeClock:
    def __init__(self, now_ms=T0_MS):
        self.now_ms = now_ms

    def __call__(self):
        return self.now_ms

    def advance(self, ms):
        self.now_ms += ms


class FakeFetcher:
    """Returns ``points`` or raises ``errors`` in order, counting calls."""

    def __init__(self, points=None, errors=None):
        self.points = list(points or [])
        self.errors = list(errors or [])
        self.always_fail = False
        self.calls = 0
        self._lock = threading.Lock()

    def fetch_all_shapes(self):
        with self._lock:
            self.calls += 1
            if self.always_fail:
                raise ShapesFetchError("network down", kind="connection")
            if self.errors:
                raise self.errors.pop(0)
        return list(self.points)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def store():
    return MemorySnapshotStore()


@pytest.fixture
def two_shapes():
    return pts("S1", THREE_POINT_LINE) + pts("S2", [(45.0, 25.0), (45.001, 25.0), (45.002, 25.001)])


@pytest.fixture
def make_cache(store, clock, sleep):
    def _make(fetcher, **kwargs):
        kwargs.setdefault("snapshot_key", "shape-store")
        kwargs.setdefault("max_age_ms", DAY_MS)
        kwargs.setdefault("retries", 3)
        kwargs.setdefault("base_delay_s", 0.1)
        return ShapeCache(
            fetcher,
            kwargs.pop("store", store),
            clock=clock,
            sleep=sleep,
            **kwargs,
        )

    return _make
