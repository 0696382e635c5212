import pytest

from arrivals.domain.errors import SnapshotError
from arrivals.services import shape_snapshot
from arrivals.services.shape_builder import build_all_shapes, group_by_shape
from conftest import THREE_POINT_LINE, pts


@pytest.fixture
def shapes(two_shapes):
    return build_all_shapes(group_by_shape(two_shapes + pts("ONE", [(3.0, 3.0)])))


def test_persistable_uses_ordered_pairs(shapes) -> None:
    data = shape_snapshot.to_persistable(shapes, last_updated_at_ms=123, content_hash="abc")
    pairs = data["state"]["shapes"]
    assert isinstance(pairs, list)
    assert [p[0] for p in pairs] == list(shapes)
    assert all(isinstance(p, list) and len(p) == 2 for p in pairs)


def test_round_trip_through_json(shapes) -> None:
    data = shape_snapshot.to_persistable(shapes, last_updated_at_ms=123, content_hash="abc")
    blob = shape_snapshot.dumps(data)

    restored, updated, content_hash = shape_snapshot.from_persistable(shape_snapshot.loads(blob))

    assert restored == shapes
    assert list(restored) == list(shapes)
    assert updated == 123
    assert content_hash == "abc"


def _valid_data(shapes):
    return shape_snapshot.loads(
        shape_snapshot.dumps(
            shape_snapshot.to_persistable(shapes, last_updated_at_ms=1, content_hash=None)
        )
    )


@pytest.mark.parametrize(
    "mutate",
    [
        lambda d: d.update(version=99),
        lambda d: d.pop("state"),
        lambda d: d["state"].update(shapes={"S1": {}}),
        lambda d: d["state"].update(last_updated_at_ms="yesterday"),
        lambda d: d["state"]["shapes"][0].append("extra"),
        lambda d: d["state"]["shapes"][0][1].update(id="OTHER"),
        lambda d: d["state"]["shapes"][0][1]["segments"].pop(),
        lambda d: d["state"]["shapes"][0][1]["points"][0].__setitem__(0, 123.0),
        lambda d: d["state"]["shapes"][0][1].update(total_distance_m=1.0),
        lambda d: d["state"]["shapes"][0][1]["segments"][1].update(cumulative_distance_m=0.0),
        lambda d: d["state"]["shapes"][0][1]["segments"][0].update(distance_m="far"),
        lambda d: d["state"]["shapes"].append(list(d["state"]["shapes"][0])),
    ],
)
def test_invalid_snapshots_are_rejected(shapes, mutate) -> None:
    data = _valid_data(shapes)
    mutate(data)
    with pytest.raises(SnapshotError):
        shape_snapshot.from_persistable(data)


def test_unparseable_blob_raises_snapshot_error() -> None:
    with pytest.raises(SnapshotError):
        shape_snapshot.loads("{not json")


def test_content_hash_is_stable_and_order_independent(shapes) -> None:
    h1 = shape_snapshot.shapes_content_hash(shapes)
    h2 = shape_snapshot.shapes_content_hash(dict(reversed(list(shapes.items()))))
    assert h1 == h2
    assert len(h1) <= 8
    int(h1, 16)


def test_content_hash_changes_with_geometry(shapes) -> None:
    other = build_all_shapes(
        group_by_shape(pts("S1", THREE_POINT_LINE[:2]) + pts("S2", [(45.0, 25.0), (45.1, 25.0)]))
    )
    assert shape_snapshot.shapes_content_hash(shapes) != shape_snapshot.shapes_content_hash(other)


def test_content_hash_of_empty_map() -> None:
    assert shape_snapshot.shapes_content_hash({}) == ""


def test_fnv1a_reference_value() -> None:
    # FNV-1a 32 of "a" is 0xe40c292c
    assert shape_snapshot._fnv1a(0x811C9DC5, "a") == 0xE40C292C
