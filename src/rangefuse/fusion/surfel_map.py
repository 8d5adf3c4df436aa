"""Append-only surfel storage with a rebuildable spatial index.

Slots are stable handles: surfels are never removed and slots are never reused,
so a slot number taken before a fusion pass stays valid after it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from rangefuse.core.errors import ContractViolationError
from rangefuse.spatial.kdtree import KdTree

logger = logging.getLogger(__name__)

_FIELDS = ("positions", "normals", "radii", "colors", "confidences", "last_seen", "created")


@dataclass
class Surfel:
    """A small oriented disk."""

    position: np.ndarray
    normal: np.ndarray
    radius: float
    color: np.ndarray
    confidence: float
    last_seen: int
    created: int


class SurfelMap:
    """Struct-of-arrays surfel model.

    The map is mutated only by the fusion engine and carries no lock; callers
    keep a single writer at a time. ``index`` is a snapshot of the positions as
    of the last ``rebuild_index()``.
    """

    def __init__(self, capacity: int = 1024):
        capacity = max(int(capacity), 1)
        self._size = 0
        self._positions = np.zeros((capacity, 3))
        self._normals = np.zeros((capacity, 3))
        self._radii = np.zeros(capacity)
        self._colors = np.zeros((capacity, 3), dtype=np.uint8)
        self._confidences = np.zeros(capacity)
        self._last_seen = np.zeros(capacity, dtype=np.int64)
        self._created = np.zeros(capacity, dtype=np.int64)
        self.frame_count = 0
        self._index = KdTree(np.zeros((0, 3)))

    def __len__(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        return len(self._radii)

    def _reserve(self, n: int) -> None:
        if n <= self.capacity:
            return
        new_capacity = self.capacity
        while new_capacity < n:
            new_capacity *= 2
        for name in _FIELDS:
            old = getattr(self, f"_{name}")
            grown = np.zeros((new_capacity,) + old.shape[1:], dtype=old.dtype)
            grown[: self._size] = old[: self._size]
            setattr(self, f"_{name}", grown)

    def _check_slot(self, slot: int) -> int:
        slot = int(slot)
        if not 0 <= slot < self._size:
            raise IndexError(f"Surfel slot {slot} out of range (map has {self._size})")
        return slot

    # -- mutation -------------------------------------------------------------

    def add(
        self,
        position: np.ndarray,
        normal: np.ndarray,
        radius: float,
        color: np.ndarray | None = None,
        confidence: float = 1.0,
        frame_index: int = 0,
    ) -> int:
        """Append a surfel and return its slot."""
        slot = self._size
        self._reserve(slot + 1)
        self._positions[slot] = position
        self._normals[slot] = normal
        self._radii[slot] = radius
        self._colors[slot] = (0, 0, 0) if color is None else np.clip(np.rint(color), 0, 255)
        self._confidences[slot] = confidence
        self._last_seen[slot] = frame_index
        self._created[slot] = frame_index
        self._size += 1
        return slot

    def update(
        self,
        slot: int,
        *,
        position: np.ndarray | None = None,
        normal: np.ndarray | None = None,
        radius: float | None = None,
        color: np.ndarray | None = None,
        confidence: float | None = None,
        last_seen: int | None = None,
    ) -> None:
        """Overwrite selected attributes of an existing surfel."""
        slot = self._check_slot(slot)
        if position is not None:
            self._positions[slot] = position
        if normal is not None:
            self._normals[slot] = normal
        if radius is not None:
            self._radii[slot] = radius
        if color is not None:
            self._colors[slot] = np.clip(np.rint(color), 0, 255)
        if confidence is not None:
            self._confidences[slot] = confidence
        if last_seen is not None:
            self._last_seen[slot] = last_seen

    def rebuild_index(self) -> KdTree:
        """Rebuild the spatial index over all current positions."""
        self._index = KdTree(self.positions)
        logger.debug(f"Rebuilt surfel index over {self._size} surfels")
        return self._index

    # -- access ---------------------------------------------------------------

    @property
    def index(self) -> KdTree:
        return self._index

    def get(self, slot: int) -> Surfel:
        slot = self._check_slot(slot)
        return Surfel(
            position=self._positions[slot].copy(),
            normal=self._normals[slot].copy(),
            radius=float(self._radii[slot]),
            color=self._colors[slot].copy(),
            confidence=float(self._confidences[slot]),
            last_seen=int(self._last_seen[slot]),
            created=int(self._created[slot]),
        )

    def _view(self, name: str) -> np.ndarray:
        view = getattr(self, f"_{name}")[: self._size]
        view.flags.writeable = False
        return view

    @property
    def positions(self) -> np.ndarray:
        return self._view("positions")

    @property
    def normals(self) -> np.ndarray:
        return self._view("normals")

    @property
    def radii(self) -> np.ndarray:
        return self._view("radii")

    @property
    def colors(self) -> np.ndarray:
        return self._view("colors")

    @property
    def confidences(self) -> np.ndarray:
        return self._view("confidences")

    @property
    def last_seen(self) -> np.ndarray:
        return self._view("last_seen")

    @property
    def created(self) -> np.ndarray:
        return self._view("created")

    # -- export ---------------------------------------------------------------

    def as_arrays(self) -> dict[str, np.ndarray]:
        """Copies of every attribute, keyed by field name."""
        arrays = {name: getattr(self, f"_{name}")[: self._size].copy() for name in _FIELDS}
        arrays["frame_count"] = np.array(self.frame_count, dtype=np.int64)
        return arrays

    @classmethod
    def from_arrays(cls, arrays: dict[str, np.ndarray]) -> SurfelMap:
        """Inverse of ``as_arrays``; the index is rebuilt."""
        missing = [name for name in _FIELDS if name not in arrays]
        if missing:
            raise ContractViolationError(f"Surfel arrays missing fields: {missing}")
        n = len(arrays["positions"])
        surfel_map = cls(capacity=n)
        for name in _FIELDS:
            data = np.asarray(arrays[name])
            if len(data) != n:
                raise ContractViolationError(f"{name}: expected {n} rows, got {len(data)}")
            target = getattr(surfel_map, f"_{name}")
            target[:n] = data
        surfel_map._size = n
        surfel_map.frame_count = int(arrays.get("frame_count", 0))
        surfel_map.rebuild_index()
        return surfel_map
