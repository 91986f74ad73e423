"""
Multi-level triangular tessellations of the unit sphere.

This file is part of earthtess.

Copyright (c) 2025 earthtess Developers.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Sequence

import numpy as np
from scipy.spatial import cKDTree  # type: ignore

from earthtess.constants import VERTEX_HIT_COS
from earthtess.methods._numba_kernels import compute_circumcenters, walk_triangle
from earthtess.utils import (
    GridInconsistencyError,
    ModelValidationError,
    check_index,
    content_hash,
    normalize,
)

logger = logging.getLogger(__name__)


class Spoke:
    """Directed edge `vj -> vk` in the circular list of spokes around `vj`.

    `t_left` is the triangle to the left of the edge (the edge runs
    counter-clockwise around it) and `corner` is the index of `vj` among the
    corners of `t_left`. `next` is the following spoke clockwise around `vj`;
    its `t_left` is this spoke's `t_right`.
    """

    __slots__ = ("corner", "next", "t_left", "t_right", "vj", "vk")

    def __init__(self, vj: int, vk: int, t_left: int, t_right: int, corner: int):
        self.vj = vj
        self.vk = vk
        self.t_left = t_left
        self.t_right = t_right
        self.corner = corner
        self.next: Spoke | None = None

    def __repr__(self) -> str:
        return f"Spoke({self.vj} -> {self.vk}, left={self.t_left}, right={self.t_right})"


class Grid:
    """An immutable, multi-level, multi-tessellation triangulation of the unit sphere.

    Triangles of every level of every tessellation are stored in one array.
    `levels[i]` holds the `[first, last)` range of triangles that make up
    level `i`, and `tessellations[k]` lists the levels of tessellation `k`
    from coarsest to finest. Triangle corners run counter-clockwise when
    viewed from outside the sphere and `neighbors[t, i]` is the triangle
    across the edge opposite corner `i` of triangle `t`.

    Circumcenters, spoke lists, descendants and the vertex KD-tree are
    built on first use.
    """

    def __init__(
        self,
        vertices: np.ndarray,
        triangles: np.ndarray,
        levels: Sequence[Sequence[int]] | np.ndarray,
        tessellations: Sequence[Sequence[int]],
        grid_id: str | None = None,
        validate: bool = True,
    ):
        """Initialize the grid.

        Args:
            vertices: (n_vertices, 3) unit vectors
            triangles: (n_triangles, 3) corner vertex indices
            levels: (n_levels, 2) triangle index ranges `[first, last)`
            tessellations: Level indices of every tessellation, coarsest first
            grid_id: Identifier of the grid. Defaults to a hash of vertices and triangles
            validate: Check unit lengths and triangle orientation
        """
        self.vertices = np.ascontiguousarray(vertices, dtype=np.float64)
        self.triangles = np.ascontiguousarray(triangles, dtype=np.int64)
        self.levels = np.asarray(levels, dtype=np.int64).reshape(-1, 2)
        self.tessellations = tuple(tuple(int(level) for level in tess) for tess in tessellations)

        self._check_structure()
        self.grid_id = grid_id if grid_id is not None else content_hash(self.vertices, self.triangles)

        sizes = self.levels[:, 1] - self.levels[:, 0]
        self._triangle_level = np.repeat(np.arange(self.n_levels), sizes)
        self._level_position: dict[int, tuple[int, int]] = {
            level: (tess_id, index)
            for tess_id, tess in enumerate(self.tessellations)
            for index, level in enumerate(tess)
        }

        if validate:
            self._check_geometry()
        self.neighbors = self._compute_neighbors()

        self._lock = threading.RLock()
        self._circumcenters: np.ndarray | None = None
        self._spokes: dict[int, dict[tuple[int, int], Spoke]] = {}
        self._spoke_lists: dict[int, dict[int, Spoke]] = {}
        self._descendants = np.full(self.n_triangles, -1, dtype=np.int64)
        self._descendant_levels: set[int] = set()
        self._tessellation_vertices: dict[int, np.ndarray] = {}
        self._kdtrees: dict[int | None, cKDTree] = {}

        logger.debug(
            "Built grid %s: %d vertices, %d triangles, %d levels, %d tessellations",
            self.grid_id,
            self.n_vertices,
            self.n_triangles,
            self.n_levels,
            self.n_tessellations,
        )

    @classmethod
    def from_tessellations(
        cls,
        vertices: np.ndarray,
        tessellations: Sequence[Sequence[np.ndarray]],
        grid_id: str | None = None,
    ) -> Grid:
        """Create a grid from per-level triangle arrays.

        Args:
            vertices: (n_vertices, 3) unit vectors
            tessellations: For every tessellation, a list of (k, 3) triangle
                arrays ordered from the coarsest level to the finest

        Returns:
            The assembled grid.
        """
        blocks = []
        levels = []
        tess_levels = []
        first = 0
        for tess in tessellations:
            indices = []
            for level_triangles in tess:
                level_triangles = np.asarray(level_triangles, dtype=np.int64).reshape(-1, 3)
                blocks.append(level_triangles)
                levels.append((first, first + len(level_triangles)))
                indices.append(len(levels) - 1)
                first += len(level_triangles)
            tess_levels.append(indices)

        triangles = np.concatenate(blocks) if blocks else np.empty((0, 3), dtype=np.int64)
        return cls(vertices, triangles, levels, tess_levels, grid_id=grid_id)

    def to_file(self, filepath: str) -> None:
        """Write the grid to a netCDF file."""
        from earthtess.io import _grid_to_netcdf

        _grid_to_netcdf(self, filepath)

    @classmethod
    def from_file(cls, filepath: str, registry: GridRegistry | None = None) -> Grid:
        """Read a grid written by `to_file`, sharing it through `registry` when given."""
        from earthtess.io import _grid_from_netcdf

        return _grid_from_netcdf(filepath, registry)

    def __repr__(self) -> str:
        return (
            f"Grid(id={self.grid_id}, vertices={self.n_vertices}, triangles={self.n_triangles}, "
            f"tessellations={self.n_tessellations})"
        )

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_triangles(self) -> int:
        return int(self.triangles.shape[0])

    @property
    def n_levels(self) -> int:
        return int(self.levels.shape[0])

    @property
    def n_tessellations(self) -> int:
        return len(self.tessellations)

    def _check_structure(self) -> None:
        """Validate array shapes and the level/tessellation bookkeeping."""
        if self.vertices.ndim != 2 or self.vertices.shape[1] != 3:
            msg = f"vertices must have shape (n, 3), got {self.vertices.shape}"
            raise ModelValidationError(msg)
        if self.triangles.ndim != 2 or self.triangles.shape[1] != 3:
            msg = f"triangles must have shape (m, 3), got {self.triangles.shape}"
            raise ModelValidationError(msg)
        if self.triangles.size and (self.triangles.min() < 0 or self.triangles.max() >= len(self.vertices)):
            msg = "triangles reference vertex indices outside the vertex array"
            raise ModelValidationError(msg)

        # Levels must tile the triangle array in order
        expected_first = 0
        for level, (first, last) in enumerate(self.levels):
            if first != expected_first or last <= first:
                msg = f"Level {level} covers triangles [{first}, {last}), expected to start at {expected_first}"
                raise ModelValidationError(msg)
            expected_first = last
        if expected_first != len(self.triangles):
            msg = f"Levels cover {expected_first} triangles but the grid has {len(self.triangles)}"
            raise ModelValidationError(msg)

        if not self.tessellations:
            msg = "A grid needs at least one tessellation"
            raise ModelValidationError(msg)
        seen = sorted(level for tess in self.tessellations for level in tess)
        if seen != list(range(self.n_levels)):
            msg = "Every level must belong to exactly one tessellation"
            raise ModelValidationError(msg)
        for tess_id, tess in enumerate(self.tessellations):
            if not tess or list(tess) != sorted(tess):
                msg = f"Tessellation {tess_id} must list its levels in increasing order"
                raise ModelValidationError(msg)

    def _check_geometry(self) -> None:
        """Check unit length of the vertices and counter-clockwise winding."""
        lengths = np.linalg.norm(self.vertices, axis=1)
        if not np.allclose(lengths, 1.0, atol=1e-6):
            msg = "Grid vertices must be unit vectors"
            raise ModelValidationError(msg)

        v0 = self.vertices[self.triangles[:, 0]]
        v1 = self.vertices[self.triangles[:, 1]]
        v2 = self.vertices[self.triangles[:, 2]]
        orientation = np.einsum("ij,ij->i", v0, np.cross(v1, v2))
        bad = np.flatnonzero(orientation <= 0.0)
        if len(bad):
            msg = (
                f"{len(bad)} triangles are not counter-clockwise when viewed from outside "
                f"the sphere (first offender: {bad[0]})"
            )
            raise ModelValidationError(msg)

    def _compute_neighbors(self) -> np.ndarray:
        """Derive triangle adjacency level by level from shared edges."""
        neighbors = np.full((self.n_triangles, 3), -1, dtype=np.int64)
        for level, (first, last) in enumerate(self.levels):
            edge_owner: dict[tuple[int, int], tuple[int, int]] = {}
            for t, (a, b, c) in enumerate(self.triangles[first:last].tolist(), start=int(first)):
                for corner, edge in ((0, (b, c)), (1, (c, a)), (2, (a, b))):
                    if edge in edge_owner:
                        msg = f"Directed edge {edge} appears twice in level {level}"
                        raise GridInconsistencyError(msg)
                    edge_owner[edge] = (t, corner)

            for (a, b), (t, corner) in edge_owner.items():
                other = edge_owner.get((b, a))
                if other is None:
                    msg = f"Edge ({a}, {b}) of triangle {t} has no neighbor in level {level}; the level does not close"
                    raise GridInconsistencyError(msg)
                neighbors[t, corner] = other[0]
        return neighbors

    # Topology accessors

    def get_vertex(self, vertex: int) -> np.ndarray:
        return self.vertices[vertex]

    def get_triangle_vertices(self, triangle: int) -> np.ndarray:
        return self.triangles[triangle]

    def get_neighbor(self, triangle: int, side: int) -> int:
        return int(self.neighbors[triangle, side])

    def get_level_of_triangle(self, triangle: int) -> int:
        return int(self._triangle_level[triangle])

    def get_first_triangle(self, level: int) -> int:
        return int(self.levels[level, 0])

    def get_last_triangle(self, level: int) -> int:
        """Index one past the last triangle of `level`."""
        return int(self.levels[level, 1])

    def get_n_levels(self, tess_id: int) -> int:
        check_index(tess_id, self.n_tessellations, "tessellation")
        return len(self.tessellations[tess_id])

    def get_level(self, tess_id: int, tess_level: int) -> int:
        """Convert a level index relative to a tessellation into a grid level index."""
        check_index(tess_id, self.n_tessellations, "tessellation")
        return self.tessellations[tess_id][tess_level]

    def get_top_level(self, tess_id: int) -> int:
        return self.get_level(tess_id, -1)

    def get_vertex_indices(self, tess_id: int) -> np.ndarray:
        """Sorted indices of the vertices connected in the top level of a tessellation."""
        check_index(tess_id, self.n_tessellations, "tessellation")
        with self._lock:
            if tess_id not in self._tessellation_vertices:
                level = self.get_top_level(tess_id)
                first, last = self.levels[level]
                self._tessellation_vertices[tess_id] = np.unique(self.triangles[first:last])
            return self._tessellation_vertices[tess_id]

    # Lazily built geometry

    def get_circumcenters(self) -> np.ndarray:
        """(n_triangles, 4) array of unit circumcenters and circumcircle thresholds."""
        with self._lock:
            if self._circumcenters is None:
                logger.debug("Computing circumcenters for grid %s", self.grid_id)
                self._circumcenters = compute_circumcenters(self.vertices, self.triangles)
            return self._circumcenters

    def get_circumcenter(self, triangle: int) -> np.ndarray:
        return self.get_circumcenters()[triangle]

    def get_spoke_list(self, level: int) -> dict[int, Spoke]:
        """Map each vertex of `level` to one spoke of its circular spoke list."""
        self._ensure_spokes(level)
        return self._spoke_lists[level]

    def get_spoke(self, level: int, vj: int, vk: int) -> Spoke:
        """The spoke running from `vj` to `vk` in `level`."""
        self._ensure_spokes(level)
        try:
            return self._spokes[level][(vj, vk)]
        except KeyError:
            msg = f"Vertices {vj} and {vk} are not connected in level {level}"
            raise GridInconsistencyError(msg) from None

    def _ensure_spokes(self, level: int) -> None:
        check_index(level, self.n_levels, "level")
        with self._lock:
            if level in self._spokes:
                return

            first, last = self.levels[level]
            spokes: dict[tuple[int, int], Spoke] = {}
            for t, corners in enumerate(self.triangles[first:last].tolist(), start=int(first)):
                for corner in range(3):
                    vj = corners[corner]
                    vk = corners[(corner + 1) % 3]
                    t_right = int(self.neighbors[t, (corner + 2) % 3])
                    spokes[(vj, vk)] = Spoke(vj, vk, t, t_right, corner)

            spoke_list: dict[int, Spoke] = {}
            for (vj, _), spoke in spokes.items():
                # The third corner of t_right, after vj, closes the next spoke.
                right = self.triangles[spoke.t_right].tolist()
                x = right[(right.index(vj) + 1) % 3]
                spoke.next = spokes[(vj, x)]
                spoke_list.setdefault(vj, spoke)

            self._spokes[level] = spokes
            self._spoke_lists[level] = spoke_list
            logger.debug("Built %d spokes for level %d of grid %s", len(spokes), level, self.grid_id)

    def get_descendant(self, triangle: int) -> int:
        """A triangle of the next finer level that overlaps `triangle`."""
        level = self.get_level_of_triangle(triangle)
        tess_id, index = self._level_position[level]
        if index + 1 >= len(self.tessellations[tess_id]):
            msg = f"Triangle {triangle} is on the top level of tessellation {tess_id} and has no descendant"
            raise GridInconsistencyError(msg)

        with self._lock:
            if level not in self._descendant_levels:
                next_level = self.tessellations[tess_id][index + 1]
                start = self.get_first_triangle(next_level)
                first, last = self.levels[level]
                for t in range(first, last):
                    centroid = normalize(self.vertices[self.triangles[t]].sum(axis=0))
                    start = self.find_triangle(start, centroid)
                    self._descendants[t] = start
                self._descendant_levels.add(level)
            return int(self._descendants[triangle])

    # Point location

    def find_triangle(self, start: int, u: np.ndarray) -> int:
        """Walk from triangle `start` to the triangle of the same level that contains `u`.

        Args:
            start: Triangle where the walk begins
            u: Query unit vector

        Returns:
            Index of a triangle whose interior, edge or corner contains `u`.
        """
        level = self.get_level_of_triangle(start)
        n_level = int(self.levels[level, 1] - self.levels[level, 0])
        max_steps = int(10 * math.sqrt(n_level)) + 100

        u = np.ascontiguousarray(u, dtype=np.float64)
        triangle = walk_triangle(
            self.vertices, self.triangles, self.neighbors, int(start), u, max_steps, VERTEX_HIT_COS
        )
        if triangle < 0:
            msg = (
                f"Walking triangle search from triangle {start} did not converge within "
                f"{max_steps} steps in level {level} of grid {self.grid_id}"
            )
            raise GridInconsistencyError(msg)
        return int(triangle)

    def find_triangle_in_tessellation(
        self,
        tess_id: int,
        u: np.ndarray,
        start: int | None = None,
        max_level: int | None = None,
    ) -> tuple[int, int]:
        """Locate `u` in a tessellation.

        If `start` lies in the target level the walk starts there. Otherwise
        the search starts on the coarsest level and descends level by level.

        Args:
            tess_id: Tessellation index
            u: Query unit vector
            start: Optional triangle from a previous query
            max_level: Optional cap on the tessellation-relative level

        Returns:
            The containing triangle and its level relative to the tessellation.
        """
        check_index(tess_id, self.n_tessellations, "tessellation")
        levels = self.tessellations[tess_id]
        top = len(levels) - 1 if max_level is None else max(0, min(max_level, len(levels) - 1))
        if start is not None and 0 <= start < self.n_triangles and self._triangle_level[start] == levels[top]:
            return self.find_triangle(start, u), top

        triangle = self.find_triangle(self.get_first_triangle(levels[0]), u)
        for _ in range(top):
            triangle = self.find_triangle(self.get_descendant(triangle), u)
        return triangle, top

    def find_closest_vertex(self, u: np.ndarray, tess_id: int | None = None) -> int:
        """Index of the grid vertex nearest to `u`, optionally among the vertices of one tessellation."""
        with self._lock:
            if tess_id not in self._kdtrees:
                points = self.vertices if tess_id is None else self.vertices[self.get_vertex_indices(tess_id)]
                self._kdtrees[tess_id] = cKDTree(points)
            tree = self._kdtrees[tess_id]
        _, index = tree.query(np.asarray(u, dtype=np.float64))
        if tess_id is not None:
            return int(self.get_vertex_indices(tess_id)[index])
        return int(index)


class GridRegistry:
    """Caller-owned cache of grids keyed by grid id.

    Models that reference the same grid share one Grid instance when they are
    loaded through the same registry. Insertion is guarded by a lock so
    concurrent loaders see a single instance per id.
    """

    def __init__(self) -> None:
        self._grids: dict[str, Grid] = {}
        self._lock = threading.Lock()

    def __contains__(self, grid_id: object) -> bool:
        return grid_id in self._grids

    def __len__(self) -> int:
        return len(self._grids)

    def get(self, grid_id: str) -> Grid | None:
        return self._grids.get(grid_id)

    def register(self, grid: Grid) -> Grid:
        """Add `grid` unless a grid with the same id is present; return the registered instance."""
        with self._lock:
            return self._grids.setdefault(grid.grid_id, grid)

    def get_or_create(self, grid_id: str, factory: Callable[[], Grid]) -> Grid:
        """Return the grid registered under `grid_id`, building it with `factory` if absent."""
        with self._lock:
            grid = self._grids.get(grid_id)
            if grid is not None:
                logger.debug("Reusing grid %s from registry", grid_id)
                return grid
            grid = factory()
            if grid.grid_id != grid_id:
                msg = f"Factory built grid {grid.grid_id} but {grid_id} was requested"
                raise GridInconsistencyError(msg)
            self._grids[grid_id] = grid
            return grid

    def discard(self, grid_id: str) -> None:
        with self._lock:
            self._grids.pop(grid_id, None)

    def clear(self) -> None:
        with self._lock:
            self._grids.clear()
