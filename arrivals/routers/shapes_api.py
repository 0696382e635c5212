# arrivals/routers/shapes_api.py
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from arrivals.services.shape_snapshot import shape_to_dict

router = APIRouter(tags=["shapes"])


def _cache(request: Request):
    return request.app.state.shape_cache


@router.get("/_health")
def health():
    return {"ok": True}


@router.get("/api/shapes/status")
def shapes_status(request: Request):
    return _cache(request).stats()


@router.post("/api/shapes/refresh")
async def shapes_refresh(request: Request, force: bool = False):
    cache = _cache(request)
    await cache.refresh(force=force)
    return cache.stats()


@router.get("/api/shapes/{shape_id}")
def shape_detail(request: Request, shape_id: str):
    shape = _cache(request).get_shape(shape_id)
    if shape is None:
        raise HTTPException(status_code=404, detail=f"unknown shape {shape_id}")
    return shape_to_dict(shape)
