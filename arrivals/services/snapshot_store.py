# arrivals/services/snapshot_store.py
from __future__ import annotations

import gzip
import logging
import os
import re
from pathlib import Path
from typing import Protocol

from arrivals.config import settings

log = logging.getLogger("snapshot_store")

_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class SnapshotStore(Protocol):
    def load(self, key: str) -> str | None: ...

    def save(self, key: str, blob: str) -> None: ...

    def clear(self, key: str) -> None: ...


class MemorySnapshotStore:
    def __init__(self):
        self._blobs: dict[str, str] = {}

    def load(self, key: str) -> str | None:
        return self._blobs.get(key)

    def save(self, key: str, blob: str) -> None:
        self._blobs[key] = blob

    def clear(self, key: str) -> None:
        self._blobs.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._blobs


class JsonFileSnapshotStore:
    """One file per key under ``root``; writes go through a temp file + os.replace."""

    def __init__(self, root: str | os.PathLike | None = None, compress: bool | None = None):
        self.root = Path(root or getattr(settings, "SNAPSHOT_DIR", "data/cache")).resolve()
        if compress is None:
            compress = bool(getattr(settings, "SNAPSHOT_COMPRESS", True))
        self.compress = compress

    def path_for(self, key: str) -> Path:
        name = _KEY_RE.sub("_", (key or "").strip()) or "snapshot"
        return self.root / (name + (".json.gz" if self.compress else ".json"))

    def load(self, key: str) -> str | None:
        path = self.path_for(key)
        if not path.exists():
            return None
        raw = path.read_bytes()
        if raw[:2] == b"\x1f\x8b":
            raw = gzip.decompress(raw)
        return raw.decode("utf-8")

    def save(self, key: str, blob: str) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = blob.encode("utf-8")
        if self.compress:
            data = gzip.compress(data)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        log.debug("snapshot_saved key=%s bytes=%s path=%s", key, len(data), path)

    def clear(self, key: str) -> None:
        path = self.path_for(key)
        if path.exists():
            path.unlink()
