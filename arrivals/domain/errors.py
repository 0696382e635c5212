# arrivals/domain/errors.py
from __future__ import annotations


class ArrivalsError(Exception):
    pass


class ShapesFetchError(ArrivalsError):
    """Network-level failure while downloading the shape table.

    ``kind`` is one of ``timeout``, ``connection``, ``http`` or ``decode``.
    """

    def __init__(self, message: str, kind: str = "connection"):
        super().__init__(message)
        self.kind = kind


class ShapesPayloadError(ArrivalsError):
    pass


class ShapeValidationError(ArrivalsError):
    pass


class SnapshotError(ArrivalsError):
    pass
