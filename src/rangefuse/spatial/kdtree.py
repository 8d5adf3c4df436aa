"""Balanced k-d tree for exact nearest-neighbor queries over 3D points.

Nodes split on the axis of maximum spread at the median. The tree is built once
over an immutable point set and only read afterwards, so any number of threads
may query it concurrently. Equal distances resolve to the lower insertion index.
"""

from __future__ import annotations

import heapq
import logging

import numpy as np

from rangefuse.core.errors import ContractViolationError, DegenerateInputError
from rangefuse.core.parallel import map_chunks

logger = logging.getLogger(__name__)

_LEAF = -1


class KdTree:
    """Exact k-d tree over an (N, 3) point set.

    Points with a non-finite coordinate (missing range samples) are skipped at
    build time; results always use indices into the original ``points``. A set
    with no finite point gives an explicit empty index (``is_empty``); querying
    it raises ``DegenerateInputError``.

    Args:
        points: (N, 3) array of positions. Copied, so later changes to the
            caller's array do not affect the index.
        leaf_size: Maximum number of points stored in a leaf.
    """

    def __init__(self, points: np.ndarray, leaf_size: int = 16):
        pts = np.array(points, dtype=np.float64, copy=True)
        if pts.size == 0:
            pts = pts.reshape(0, 3)
        if pts.ndim != 2 or pts.shape[1] != 3:
            raise ContractViolationError(f"KdTree expects (N, 3) points, got {pts.shape}")
        if leaf_size < 1:
            raise ContractViolationError(f"leaf_size must be >= 1, got {leaf_size}")

        self.leaf_size = leaf_size
        self._points = pts
        self._points.flags.writeable = False
        # Rows with a NaN or inf coordinate are kept in ``points`` but never indexed.
        self._order = np.flatnonzero(np.all(np.isfinite(pts), axis=1))
        if len(self._order) < len(pts):
            logger.debug(f"KdTree: {len(pts) - len(self._order)} non-finite points not indexed")

        # Flat node storage: a node is a leaf when its split axis is _LEAF.
        self._axis: list[int] = []
        self._value: list[float] = []
        self._left: list[int] = []
        self._right: list[int] = []
        self._start: list[int] = []
        self._stop: list[int] = []

        if len(self._order):
            self._build(0, len(self._order))
        self._sorted = self._points[self._order]
        self._sorted.flags.writeable = False
        self._order.flags.writeable = False

    # -- construction ---------------------------------------------------------

    def _new_node(self, start: int, stop: int) -> int:
        self._axis.append(_LEAF)
        self._value.append(0.0)
        self._left.append(-1)
        self._right.append(-1)
        self._start.append(start)
        self._stop.append(stop)
        return len(self._axis) - 1

    def _build(self, start: int, stop: int) -> int:
        node = self._new_node(start, stop)
        if stop - start <= self.leaf_size:
            return node

        idx = self._order[start:stop]
        block = self._points[idx]
        axis = int(np.argmax(np.ptp(block, axis=0)))
        mid = (stop - start) // 2
        part = np.argpartition(block[:, axis], mid, kind="introselect")
        self._order[start:stop] = idx[part]

        self._axis[node] = axis
        self._value[node] = float(self._points[self._order[start + mid], axis])
        self._left[node] = self._build(start, start + mid)
        self._right[node] = self._build(start + mid, stop)
        return node

    # -- properties -----------------------------------------------------------

    def __len__(self) -> int:
        return len(self._points)

    @property
    def is_empty(self) -> bool:
        """True when no finite point is indexed."""
        return len(self._order) == 0

    @property
    def num_indexed(self) -> int:
        return len(self._order)

    @property
    def points(self) -> np.ndarray:
        return self._points

    @property
    def depth(self) -> int:
        """Depth of the deepest leaf (0 for a single-leaf tree)."""
        if self.is_empty:
            return 0
        best, stack = 0, [(0, 0)]
        while stack:
            node, d = stack.pop()
            if self._axis[node] == _LEAF:
                best = max(best, d)
            else:
                stack.append((self._left[node], d + 1))
                stack.append((self._right[node], d + 1))
        return best

    def _check_query(self, query: np.ndarray) -> np.ndarray:
        if self.is_empty:
            raise DegenerateInputError("Query against an empty KdTree")
        q = np.asarray(query, dtype=np.float64).reshape(-1)
        if q.shape != (3,):
            raise ContractViolationError(f"Query must be a 3D point, got shape {q.shape}")
        if not np.all(np.isfinite(q)):
            raise ContractViolationError(f"Query point is not finite: {q.tolist()}")
        return q

    def _children(self, node: int, q: np.ndarray) -> tuple[int, int, float]:
        """Near child, far child, squared distance from ``q`` to the split plane."""
        diff = q[self._axis[node]] - self._value[node]
        if diff < 0.0:
            return self._left[node], self._right[node], diff * diff
        return self._right[node], self._left[node], diff * diff

    # -- single queries -------------------------------------------------------

    def nearest(self, query: np.ndarray) -> tuple[int, float]:
        """Closest point to ``query`` as ``(index, squared_distance)``."""
        q = self._check_query(query)
        best_index, best_dist = -1, np.inf
        stack = [(0, 0.0)]
        while stack:
            node, bound = stack.pop()
            if bound > best_dist:
                continue
            if self._axis[node] == _LEAF:
                start, stop = self._start[node], self._stop[node]
                d = np.sum((self._sorted[start:stop] - q) ** 2, axis=1)
                m = float(d.min())
                if m <= best_dist:
                    candidate = int(self._order[start:stop][d == m].min())
                    if m < best_dist or candidate < best_index:
                        best_index, best_dist = candidate, m
                continue
            near, far, plane = self._children(node, q)
            stack.append((far, plane))
            stack.append((near, bound))
        return best_index, best_dist

    def k_nearest(self, query: np.ndarray, k: int) -> tuple[np.ndarray, np.ndarray]:
        """The ``k`` closest points, ascending by (distance, index).

        Returns fewer than ``k`` results when the set is smaller than ``k``.
        """
        if k < 1:
            raise ContractViolationError(f"k must be >= 1, got {k}")
        q = self._check_query(query)
        k = min(k, self.num_indexed)
        # Max-heap on (distance, index) through negated keys.
        heap: list[tuple[float, int]] = []
        stack = [(0, 0.0)]
        while stack:
            node, bound = stack.pop()
            if len(heap) == k and bound > -heap[0][0]:
                continue
            if self._axis[node] == _LEAF:
                start, stop = self._start[node], self._stop[node]
                d = np.sum((self._sorted[start:stop] - q) ** 2, axis=1)
                for dist, index in zip(d.tolist(), self._order[start:stop].tolist()):
                    if len(heap) < k:
                        heapq.heappush(heap, (-dist, -index))
                    elif (dist, index) < (-heap[0][0], -heap[0][1]):
                        heapq.heapreplace(heap, (-dist, -index))
                continue
            near, far, plane = self._children(node, q)
            stack.append((far, plane))
            stack.append((near, bound))

        found = sorted((-nd, -ni) for nd, ni in heap)
        indices = np.array([i for _, i in found], dtype=np.int64)
        dists = np.array([d for d, _ in found], dtype=np.float64)
        return indices, dists

    def within_radius(self, query: np.ndarray, radius: float) -> tuple[np.ndarray, np.ndarray]:
        """All points with distance <= ``radius``, ascending by (distance, index)."""
        q = self._check_query(query)
        r_sq = float(radius) ** 2
        found_idx: list[np.ndarray] = []
        found_dist: list[np.ndarray] = []
        stack = [(0, 0.0)]
        while stack:
            node, bound = stack.pop()
            if bound > r_sq:
                continue
            if self._axis[node] == _LEAF:
                start, stop = self._start[node], self._stop[node]
                d = np.sum((self._sorted[start:stop] - q) ** 2, axis=1)
                hit = d <= r_sq
                if hit.any():
                    found_idx.append(self._order[start:stop][hit])
                    found_dist.append(d[hit])
                continue
            near, far, plane = self._children(node, q)
            stack.append((far, plane))
            stack.append((near, bound))

        if not found_idx:
            return np.zeros(0, dtype=np.int64), np.zeros(0)
        indices = np.concatenate(found_idx).astype(np.int64)
        dists = np.concatenate(found_dist)
        order = np.lexsort((indices, dists))
        return indices[order], dists[order]

    # -- batched queries ------------------------------------------------------

    def _check_batch(self, queries: np.ndarray) -> np.ndarray:
        if self.is_empty:
            raise DegenerateInputError("Query against an empty KdTree")
        qs = np.asarray(queries, dtype=np.float64)
        if qs.size == 0:
            return qs.reshape(0, 3)
        if qs.ndim != 2 or qs.shape[1] != 3:
            raise ContractViolationError(f"Queries must be (M, 3), got {qs.shape}")
        return qs

    def nearest_batch(
        self,
        queries: np.ndarray,
        workers: int | None = None,
        chunk_size: int = 1024,
    ) -> tuple[np.ndarray, np.ndarray]:
        """``nearest`` for every row of ``queries``, run over a thread pool."""
        qs = self._check_batch(queries)
        indices = np.empty(len(qs), dtype=np.int64)
        dists = np.empty(len(qs), dtype=np.float64)

        def work(start: int, stop: int) -> None:
            for i in range(start, stop):
                indices[i], dists[i] = self.nearest(qs[i])

        map_chunks(work, len(qs), chunk_size=chunk_size, workers=workers)
        return indices, dists

    def k_nearest_batch(
        self,
        queries: np.ndarray,
        k: int,
        workers: int | None = None,
        chunk_size: int = 1024,
    ) -> tuple[np.ndarray, np.ndarray]:
        """``k_nearest`` per row; missing neighbors are padded with -1 / inf."""
        qs = self._check_batch(queries)
        indices = np.full((len(qs), k), -1, dtype=np.int64)
        dists = np.full((len(qs), k), np.inf)

        def work(start: int, stop: int) -> None:
            for i in range(start, stop):
                idx, d = self.k_nearest(qs[i], k)
                indices[i, : len(idx)] = idx
                dists[i, : len(d)] = d

        map_chunks(work, len(qs), chunk_size=chunk_size, workers=workers)
        return indices, dists

    def within_radius_batch(
        self,
        queries: np.ndarray,
        radii: np.ndarray | float,
        workers: int | None = None,
        chunk_size: int = 1024,
    ) -> list[tuple[np.ndarray, np.ndarray]]:
        """``within_radius`` per row, with a shared or per-query radius."""
        qs = self._check_batch(queries)
        radii = np.broadcast_to(np.asarray(radii, dtype=np.float64), (len(qs),))
        results: list[tuple[np.ndarray, np.ndarray] | None] = [None] * len(qs)

        def work(start: int, stop: int) -> None:
            for i in range(start, stop):
                results[i] = self.within_radius(qs[i], radii[i])

        map_chunks(work, len(qs), chunk_size=chunk_size, workers=workers)
        return results
