# arrivals/services/shapes_client.py
from __future__ import annotations

import gzip
import json
import logging
import math

import requests

from arrivals.config import settings
from arrivals.domain.errors import ShapesFetchError, ShapesPayloadError
from arrivals.domain.models import Coordinate, ShapePoint

log = logging.getLogger("shapes_client")


class ShapesClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        agency_id: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        base = (base_url or getattr(settings, "SHAPES_API_BASE_URL", "") or "").strip()
        path = (getattr(settings, "SHAPES_API_PATH", "") or "/opendata/shapes").strip()
        self.url = base.rstrip("/") + "/" + path.lstrip("/") if base else ""
        self.api_key = (api_key or getattr(settings, "SHAPES_API_KEY", "") or "").strip()
        self.agency_id = str(agency_id or getattr(settings, "AGENCY_ID", "") or "").strip()
        self.timeout = float(timeout or getattr(settings, "SHAPES_HTTP_TIMEOUT", None) or 30.0)

        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        if self.api_key:
            self._session.headers["X-API-Key"] = self.api_key
        if self.agency_id:
            self._session.headers["X-Agency-Id"] = self.agency_id

    def fetch_raw(self) -> list:
        if not self.url:
            raise ShapesFetchError("SHAPES_API_BASE_URL is not configured", kind="connection")
        try:
            r = self._session.get(self.url, timeout=self.timeout)
            r.raise_for_status()
        except requests.Timeout as e:
            raise ShapesFetchError(f"timeout fetching shapes: {e}", kind="timeout") from e
        except requests.ConnectionError as e:
            raise ShapesFetchError(
                f"connection error fetching shapes: {e}", kind="connection"
            ) from e
        except requests.HTTPError as e:
            raise ShapesFetchError(f"http error fetching shapes: {e}", kind="http") from e

        content = r.content
        if content[:2] == b"\x1f\x8b":
            content = gzip.decompress(content)
        try:
            data = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ShapesFetchError(f"invalid shapes payload: {e}", kind="decode") from e
        if not isinstance(data, list):
            raise ShapesPayloadError(f"shapes payload must be a list, got {type(data).__name__}")
        return data

    def fetch_all_shapes(self) -> list[ShapePoint]:
        return parse_shape_rows(self.fetch_raw())


def _as_float(v) -> float | None:
    if isinstance(v, bool) or v is None:
        return None
    try:
        f = float(str(v).replace(",", ".")) if isinstance(v, str) else float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def parse_shape_rows(rows) -> list[ShapePoint]:
    """Convert API rows into ShapePoints, skipping rows that cannot be read.

    Coordinate ranges are not checked here; that is the builder's job so an
    out-of-range point rejects its whole shape.
    """
    if not isinstance(rows, list):
        raise ShapesPayloadError(f"shapes payload must be a list, got {type(rows).__name__}")

    out: list[ShapePoint] = []
    skipped = 0
    for row in rows:
        if not isinstance(row, dict):
            skipped += 1
            continue
        sid = str(row.get("shape_id") or "").strip()
        lat = _as_float(row.get("shape_pt_lat"))
        lon = _as_float(row.get("shape_pt_lon"))
        seq_f = _as_float(row.get("shape_pt_sequence"))
        if not sid or lat is None or lon is None or seq_f is None or seq_f < 0:
            skipped += 1
            continue
        out.append(
            ShapePoint(
                shape_id=sid,
                sequence=int(seq_f),
                coordinate=Coordinate(latitude=lat, longitude=lon),
            )
        )
    if skipped:
        log.warning("shape_rows_skipped skipped=%s kept=%s", skipped, len(out))
    return out
