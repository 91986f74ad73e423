"""
Sibson natural-neighbor interpolation on the sphere.

The weight of a vertex is the area its Voronoi cell would lose to the query
point if the point were inserted into the Delaunay triangulation. The
triangles whose circumcircles contain the query point form a cavity; the
cavity boundary lists the natural neighbors, and the area stolen from each
one is a spherical polygon built from circumcenters of cavity triangles and
of the new triangles fanning out from the query point.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING

import numpy as np

from earthtess.interpolation.base import HorizontalInterpolator
from earthtess.methods._numba_kernels import circumcenter, spherical_polygon_area
from earthtess.utils import GridInconsistencyError

if TYPE_CHECKING:
    from earthtess.grid import Grid

logger = logging.getLogger(__name__)


class NaturalNeighborInterpolator(HorizontalInterpolator):
    """Sibson natural-neighbor coefficients.

    Triangle marks are kept in boolean arrays sized to the grid and are
    cleared after every query, including queries that raise.
    """

    name = "natural_neighbor"

    def __init__(self, grid: Grid):
        super().__init__(grid)
        self._marked = np.zeros(grid.n_triangles, dtype=bool)
        self._rejected = np.zeros(grid.n_triangles, dtype=bool)
        self._touched: list[int] = []

    @property
    def is_clean(self) -> bool:
        """True when no triangle is marked, i.e. between queries."""
        return not self._touched and not self._marked.any() and not self._rejected.any()

    def get_coefficients(self, triangle: int, u: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        vertex = self.find_vertex_hit(triangle, u)
        if vertex >= 0:
            return np.array([vertex]), np.array([1.0])

        try:
            edges = self._mark_cavity(triangle, u)
            loop = self._chain_edges(edges)
            areas = self._stolen_areas(self.grid.get_level_of_triangle(triangle), loop, u)
        finally:
            self._reset()

        total = areas.sum()
        if not total > 0.0:
            msg = f"Natural neighbor areas around triangle {triangle} sum to {total}"
            raise GridInconsistencyError(msg)
        return np.asarray(loop, dtype=np.int64), areas / total

    def _mark(self, triangles: np.ndarray, t: int) -> None:
        triangles[t] = True
        self._touched.append(t)

    def _mark_cavity(self, triangle: int, u: np.ndarray) -> list[tuple[int, int]]:
        """Mark every triangle whose circumcircle contains `u`.

        Returns:
            The directed edges (counter-clockwise around the cavity) that
            separate marked triangles from unmarked ones.
        """
        centers = self.grid.get_circumcenters()
        corners = self.grid.triangles
        neighbors = self.grid.neighbors

        self._mark(self._marked, triangle)
        queue = deque([triangle])
        edges = []
        while queue:
            t = queue.popleft()
            for i in range(3):
                n = neighbors[t, i]
                if self._marked[n]:
                    continue
                if not self._rejected[n]:
                    if float(np.dot(u, centers[n, :3])) > centers[n, 3]:
                        self._mark(self._marked, n)
                        queue.append(n)
                        continue
                    self._mark(self._rejected, n)
                edges.append((int(corners[t, (i + 1) % 3]), int(corners[t, (i + 2) % 3])))
        return edges

    def _chain_edges(self, edges: list[tuple[int, int]]) -> list[int]:
        """Order the cavity boundary edges into a single closed loop of vertices."""
        successors: dict[int, int] = {}
        for start, end in edges:
            if start in successors:
                msg = f"natural neighbor edges are out of order: vertex {start} starts more than one edge"
                raise GridInconsistencyError(msg)
            successors[start] = end

        first = edges[0][0]
        loop = [first]
        vertex = successors[first]
        while vertex != first:
            loop.append(vertex)
            if vertex not in successors or len(loop) > len(edges):
                msg = f"natural neighbor edges are out of order: no edge continues from vertex {vertex}"
                raise GridInconsistencyError(msg)
            vertex = successors[vertex]

        if len(loop) != len(edges):
            msg = (
                f"natural neighbor edges are out of order: the boundary has {len(edges)} edges "
                f"but the loop through vertex {first} closes after {len(loop)}"
            )
            raise GridInconsistencyError(msg)
        return loop

    def _stolen_areas(self, level: int, loop: list[int], u: np.ndarray) -> np.ndarray:
        vertices = self.grid.vertices
        centers = self.grid.get_circumcenters()
        n = len(loop)

        # Circumcenters of the triangles (u, p_i, p_i+1) created by inserting u
        virtual = [circumcenter(u, vertices[loop[i]], vertices[loop[(i + 1) % n]]) for i in range(n)]

        areas = np.empty(n)
        for i, vertex in enumerate(loop):
            polygon = [virtual[i - 1]]
            spoke = self.grid.get_spoke(level, vertex, loop[i - 1])
            while self._marked[spoke.t_right]:
                polygon.append(centers[spoke.t_right, :3])
                spoke = spoke.next
            if spoke.vk != loop[(i + 1) % n]:
                msg = (
                    f"natural neighbor edges are out of order: rotating around vertex {vertex} "
                    f"ended at {spoke.vk} instead of {loop[(i + 1) % n]}"
                )
                raise GridInconsistencyError(msg)
            polygon.append(virtual[i])
            areas[i] = spherical_polygon_area(np.array(polygon))

        logger.debug("Natural neighbors of %s: %s", u, loop)
        return areas

    def _reset(self) -> None:
        if self._touched:
            touched = np.fromiter(self._touched, dtype=np.int64, count=len(self._touched))
            self._marked[touched] = False
            self._rejected[touched] = False
            self._touched.clear()
