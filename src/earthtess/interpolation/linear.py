"""
Barycentric interpolation within the triangle that contains the query point.
"""

from __future__ import annotations

import numpy as np

from earthtess.interpolation.base import HorizontalInterpolator
from earthtess.methods._numba_kernels import linear_coefficients


class LinearInterpolator(HorizontalInterpolator):
    """Weights the three corners of the containing triangle by their spherical barycentric coordinates."""

    name = "linear"

    def get_coefficients(self, triangle: int, u: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        vertex = self.find_vertex_hit(triangle, u)
        if vertex >= 0:
            return np.array([vertex]), np.array([1.0])

        corners = self.grid.get_triangle_vertices(triangle)
        vertices = self.grid.vertices
        coefficients = linear_coefficients(vertices[corners[0]], vertices[corners[1]], vertices[corners[2]], u)

        # Points on an edge get no contribution from the opposite corner
        keep = coefficients != 0.0
        return corners[keep].copy(), coefficients[keep]
