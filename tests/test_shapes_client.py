import gzip
import json

import pytest
import requests

from arrivals.domain.errors import ShapesFetchError, ShapesPayloadError
from arrivals.services.shapes_client import ShapesClient, parse_shape_rows


class FakeResponse:
    def __init__(self, content: bytes, status: int = 200):
        self.content = content
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.headers = {}
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.exc is not None:
            raise self.exc
        return self.response


ROWS = [
    {"shape_id": "S1", "shape_pt_lat": 46.77, "shape_pt_lon": 23.59, "shape_pt_sequence": 1},
    {"shape_id": "S1", "shape_pt_lat": "46,78", "shape_pt_lon": "23.60", "shape_pt_sequence": "2"},
]


def _client(session):
    return ShapesClient(
        base_url="https://example.test/v1/",
        api_key="k",
        agency_id=2,
        timeout=5,
        session=session,
    )


def test_fetch_all_shapes_sends_headers_and_parses() -> None:
    session = FakeSession(FakeResponse(json.dumps(ROWS).encode()))
    client = _client(session)

    points = client.fetch_all_shapes()

    assert session.calls == [("https://example.test/v1/opendata/shapes", 5.0)]
    assert session.headers["X-API-Key"] == "k"
    assert session.headers["X-Agency-Id"] == "2"
    assert [p.sequence for p in points] == [1, 2]
    assert points[1].coordinate.latitude == pytest.approx(46.78)


def test_fetch_handles_gzip_body() -> None:
    session = FakeSession(FakeResponse(gzip.compress(json.dumps(ROWS).encode())))
    assert len(_client(session).fetch_all_shapes()) == 2


@pytest.mark.parametrize(
    "exc, kind",
    [
        (requests.Timeout("slow"), "timeout"),
        (requests.ConnectionError("offline"), "connection"),
    ],
)
def test_network_errors_become_fetch_errors(exc, kind) -> None:
    with pytest.raises(ShapesFetchError) as info:
        _client(FakeSession(exc=exc)).fetch_all_shapes()
    assert info.value.kind == kind


def test_http_error_status() -> None:
    with pytest.raises(ShapesFetchError) as info:
        _client(FakeSession(FakeResponse(b"[]", status=503))).fetch_all_shapes()
    assert info.value.kind == "http"


def test_invalid_json_is_decode_error() -> None:
    with pytest.raises(ShapesFetchError) as info:
        _client(FakeSession(FakeResponse(b"<html>"))).fetch_all_shapes()
    assert info.value.kind == "decode"


def test_non_list_payload() -> None:
    with pytest.raises(ShapesPayloadError):
        _client(FakeSession(FakeResponse(b'{"error": "nope"}'))).fetch_all_shapes()


def test_parse_shape_rows_skips_unreadable_rows() -> None:
    rows = ROWS + [
        "not a dict",
        {"shape_id": "", "shape_pt_lat": 1, "shape_pt_lon": 1, "shape_pt_sequence": 1},
        {"shape_id": "S2", "shape_pt_lat": None, "shape_pt_lon": 1, "shape_pt_sequence": 1},
        {"shape_id": "S2", "shape_pt_lat": 1, "shape_pt_lon": "x", "shape_pt_sequence": 1},
        {"shape_id": "S2", "shape_pt_lat": 1, "shape_pt_lon": 1, "shape_pt_sequence": -1},
        {"shape_id": "S3", "shape_pt_lat": 95.0, "shape_pt_lon": 1, "shape_pt_sequence": 0},
    ]
    points = parse_shape_rows(rows)
    assert [p.shape_id for p in points] == ["S1", "S1", "S3"]


def test_parse_shape_rows_requires_list() -> None:
    with pytest.raises(ShapesPayloadError):
        parse_shape_rows({"shape_id": "S1"})
