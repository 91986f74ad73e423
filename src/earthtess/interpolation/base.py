"""
Base class for horizontal interpolation strategies.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

import numpy as np

from earthtess.constants import VERTEX_HIT_COS

if TYPE_CHECKING:
    from earthtess.grid import Grid


class HorizontalInterpolator(abc.ABC):
    """Computes the vertices and coefficients that interpolate a field at a point on the sphere.

    An interpolator is bound to one grid and may own scratch buffers sized to
    it, so an instance must not be shared between threads.
    """

    name: str = ""

    def __init__(self, grid: Grid):
        self.grid = grid

    @abc.abstractmethod
    def get_coefficients(self, triangle: int, u: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Interpolation coefficients of `u`.

        Args:
            triangle: Triangle containing `u`, as returned by the point location walk
            u: Query unit vector (contiguous float64)

        Returns:
            (vertices, coefficients). The coefficients are non-negative and sum to 1.
        """
        pass

    def find_vertex_hit(self, triangle: int, u: np.ndarray) -> int:
        """Index of the corner of `triangle` that coincides with `u`, or -1."""
        for vertex in self.grid.get_triangle_vertices(triangle):
            if float(np.dot(self.grid.vertices[vertex], u)) > VERTEX_HIT_COS:
                return int(vertex)
        return -1

    def __repr__(self) -> str:
        return f"{type(self).__name__}(grid={self.grid.grid_id})"
