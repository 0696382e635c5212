# arrivals/services/shape_cache.py
from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from arrivals.config import settings
from arrivals.domain.errors import ShapesFetchError, SnapshotError
from arrivals.domain.models import CacheStatus, RouteShape, ShapePoint
from arrivals.services import shape_snapshot
from arrivals.services.common_fetch import SleepFn, with_retry
from arrivals.services.shape_builder import build_all_shapes, group_by_shape
from arrivals.services.snapshot_store import SnapshotStore

log = logging.getLogger("shape_cache")


class ShapesFetcher(Protocol):
    def fetch_all_shapes(self) -> list[ShapePoint]: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class ShapeCache:
    """Route shapes by shape id, cache-first with refresh-behind.

    One instance is built at startup and handed to whoever needs shapes.
    The map is replaced wholesale on every successful refresh and left alone
    when a refresh fails.
    """

    def __init__(
        self,
        fetcher: ShapesFetcher,
        store: SnapshotStore,
        *,
        snapshot_key: str | None = None,
        max_age_ms: int | None = None,
        retries: int | None = None,
        base_delay_s: float | None = None,
        clock: Callable[[], int] | None = None,
        sleep: SleepFn | None = None,
    ):
        self._fetcher = fetcher
        self._store = store
        self._key = snapshot_key or settings.SNAPSHOT_KEY
        self._max_age_ms = int(max_age_ms if max_age_ms is not None else settings.SHAPES_MAX_AGE_MS)
        self._retries = int(retries if retries is not None else settings.SHAPES_RETRY_ATTEMPTS)
        self._base_delay_s = float(
            base_delay_s if base_delay_s is not None else settings.SHAPES_RETRY_BASE_DELAY_S
        )
        self._clock = clock or _now_ms
        self._sleep = sleep

        self._shapes: dict[str, RouteShape] = {}
        self._last_updated_at_ms: int | None = None
        self._content_hash: str | None = None
        self._retry_count: int = 0
        self._is_loading: bool = False
        self._last_error: str | None = None

        # Bumped by clear(); a refresh started under an older generation is dropped
        self._generation: int = 0
        self._store_lock = asyncio.Lock()

        self._inflight: asyncio.Task | None = None
        self._background: asyncio.Task | None = None

    # ---------------- Read-only state ----------------
    @property
    def last_updated_at_ms(self) -> int | None:
        return self._last_updated_at_ms

    @property
    def content_hash(self) -> str | None:
        return self._content_hash

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def size(self) -> int:
        return len(self._shapes)

    @property
    def status(self) -> CacheStatus:
        if self._is_loading:
            return CacheStatus.LOADING
        if self._last_error:
            return CacheStatus.ERROR
        if self._last_updated_at_ms is not None:
            return CacheStatus.READY
        return CacheStatus.EMPTY

    def get_shape(self, shape_id: str) -> RouteShape | None:
        return self._shapes.get(shape_id)

    def has_shape(self, shape_id: str) -> bool:
        return shape_id in self._shapes

    def shape_ids(self) -> list[str]:
        return list(self._shapes)

    def age_ms(self) -> int | None:
        if self._last_updated_at_ms is None:
            return None
        return self._clock() - self._last_updated_at_ms

    def is_fresh(self, max_age_ms: int | None = None) -> bool:
        limit = self._max_age_ms if max_age_ms is None else max_age_ms
        age = self.age_ms()
        return age is not None and age < limit

    def is_expired(self) -> bool:
        return not self.is_fresh()

    def stats(self) -> dict:
        updated = self._last_updated_at_ms
        return {
            "status": self.status.value,
            "size": self.size,
            "is_loading": self._is_loading,
            "last_updated_at_ms": updated,
            "last_updated_iso": (
                datetime.fromtimestamp(updated / 1000, tz=UTC).isoformat() if updated else None
            ),
            "is_fresh": self.is_fresh(),
            "content_hash": self._content_hash,
            "retry_count": self._retry_count,
            "last_error": self._last_error,
        }

    # ---------------- Persistence ----------------
    async def _load_snapshot(self) -> bool:
        try:
            blob = await asyncio.to_thread(self._store.load, self._key)
        except Exception as e:
            log.warning("snapshot_load_failed key=%s err=%r", self._key, e)
            return False
        if not blob:
            return False
        try:
            shapes, updated, content_hash = shape_snapshot.from_persistable(
                shape_snapshot.loads(blob)
            )
        except SnapshotError as e:
            log.warning("snapshot_corrupt key=%s err=%s", self._key, e)
            return False

        self._shapes = shapes
        self._last_updated_at_ms = updated
        self._content_hash = content_hash
        log.info(
            "snapshot_loaded key=%s shapes=%s age_ms=%s", self._key, len(shapes), self.age_ms()
        )
        return True

    async def _save_snapshot(self, generation: int) -> None:
        async with self._store_lock:
            if generation != self._generation:
                return
            data = shape_snapshot.to_persistable(
                self._shapes,
                last_updated_at_ms=self._last_updated_at_ms,
                content_hash=self._content_hash,
            )
            try:
                await asyncio.to_thread(self._store.save, self._key, shape_snapshot.dumps(data))
            except Exception as e:
                log.warning("snapshot_save_failed key=%s err=%r", self._key, e)

    # ---------------- Lifecycle ----------------
    async def initialize(self) -> None:
        loaded = await self._load_snapshot()
        if loaded and self.is_fresh():
            self._background = asyncio.create_task(self.refresh(force=True))
            self._background.add_done_callback(self._on_background_done)
            return
        if loaded:
            log.info("snapshot_expired key=%s, fetching", self._key)
        await self.refresh(force=True)

    def _on_background_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("background_refresh_crashed err=%r", exc)

    async def refresh(self, force: bool = False) -> None:
        if self._inflight is not None and not self._inflight.done():
            await asyncio.shield(self._inflight)
            return
        if not force and self.is_fresh():
            return

        self._is_loading = True
        self._inflight = asyncio.create_task(self._do_refresh())
        try:
            await asyncio.shield(self._inflight)
        finally:
            if self._inflight is not None and self._inflight.done():
                self._inflight = None

    async def wait_for_refresh(self) -> None:
        for task in (self._background, self._inflight):
            if task is not None and not task.done():
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _fetch_points(self) -> list[ShapePoint]:
        return await asyncio.to_thread(self._fetcher.fetch_all_shapes)

    async def _do_refresh(self) -> None:
        self._is_loading = True
        t0 = time.monotonic()
        generation = self._generation
        log.info("shapes_refresh start cached=%s", len(self._shapes))
        try:
            points = await with_retry(
                self._fetch_points,
                retries=self._retries,
                base_delay=self._base_delay_s,
                retry_on=(ShapesFetchError,),
                sleep=self._sleep,
                label="bulk shape fetch",
            )
            shapes = build_all_shapes(group_by_shape(points))
        except Exception as e:
            if generation != self._generation:
                log.info("shapes_refresh failed after clear, ignored err=%s", e)
                return
            self._retry_count += 1
            kind = getattr(e, "kind", None) or type(e).__name__
            if self._shapes:
                self._last_error = f"refresh failed ({kind}): {e}. Using cached data."
            else:
                self._last_error = f"refresh failed ({kind}): {e}"
            log.warning(
                "shapes_refresh failed retry_count=%s kept=%s err=%s",
                self._retry_count,
                len(self._shapes),
                e,
            )
            return
        finally:
            self._is_loading = False

        if generation != self._generation:
            log.info("shapes_refresh discarded, cache cleared while fetching")
            return

        new_hash = shape_snapshot.shapes_content_hash(shapes)
        changed = new_hash != self._content_hash
        self._shapes = shapes
        self._content_hash = new_hash
        self._last_updated_at_ms = self._clock()
        self._retry_count = 0
        self._last_error = None
        log.info(
            "shapes_refresh ok shapes=%s changed=%s hash=%s took_s=%.3f",
            len(shapes),
            changed,
            new_hash,
            time.monotonic() - t0,
        )
        await self._save_snapshot(generation)

    async def clear(self) -> None:
        self._generation += 1
        self._shapes = {}
        self._last_updated_at_ms = None
        self._content_hash = None
        self._retry_count = 0
        self._last_error = None
        async with self._store_lock:
            try:
                await asyncio.to_thread(self._store.clear, self._key)
            except Exception as e:
                log.warning("snapshot_clear_failed key=%s err=%r", self._key, e)
