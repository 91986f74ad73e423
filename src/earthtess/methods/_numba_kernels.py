"""
Numba-optimized kernels for the geometric core.

This module provides JIT-compiled functions for the inner loops of point
location, horizontal coefficient computation and radial spline setup. All
vectors are assumed to be unit vectors stored as float64 arrays of length 3.
"""

import numpy as np
from numba import jit, prange


@jit(nopython=True, nogil=True)
def triple_product(u, a, b):
    """Scalar triple product u . (a x b)."""
    return (
        u[0] * (a[1] * b[2] - a[2] * b[1])
        + u[1] * (a[2] * b[0] - a[0] * b[2])
        + u[2] * (a[0] * b[1] - a[1] * b[0])
    )


@jit(nopython=True, nogil=True)
def walk_triangle(
    vertices,  # (n_vertices, 3)
    triangles,  # (n_triangles, 3)
    neighbors,  # (n_triangles, 3) - neighbor i is across the edge opposite corner i
    start,
    u,  # (3,) query unit vector
    max_steps,
    hit_cos,
):
    """
    Walk from triangle `start` to the triangle that contains `u`.

    At every step the side of each edge is evaluated with a triple product and
    the walk crosses the edge with the most negative value. The walk stops as
    soon as the query coincides with a corner of the current triangle.

    Args:
        vertices: Grid vertex unit vectors
        triangles: Corner vertex indices of every triangle
        neighbors: Neighbor triangle indices of every triangle
        start: Index of the first triangle visited
        u: Query unit vector
        max_steps: Maximum number of triangles visited
        hit_cos: Cosine threshold for a vertex hit

    Returns:
        Index of the containing triangle, or -1 if the walk did not converge.
    """
    triangle = start
    for _ in range(max_steps):
        for k in range(3):
            v = vertices[triangles[triangle, k]]
            if u[0] * v[0] + u[1] * v[1] + u[2] * v[2] > hit_cos:
                return triangle

        worst = 0.0
        side = -1
        for i in range(3):
            a = vertices[triangles[triangle, (i + 1) % 3]]
            b = vertices[triangles[triangle, (i + 2) % 3]]
            s = triple_product(u, a, b)
            if s < worst:
                worst = s
                side = i

        if side == -1:
            return triangle
        triangle = neighbors[triangle, side]

    return -1


@jit(nopython=True, nogil=True)
def linear_coefficients(a, b, c, u):
    """
    Barycentric coefficients of `u` with respect to triangle (a, b, c).

    Each coefficient is the triple product of `u` with the edge opposite the
    corresponding corner, normalized so the three sum to one.
    """
    coefficients = np.empty(3)
    coefficients[0] = triple_product(u, b, c)
    coefficients[1] = triple_product(u, c, a)
    coefficients[2] = triple_product(u, a, b)
    total = coefficients[0] + coefficients[1] + coefficients[2]
    for i in range(3):
        coefficients[i] /= total
    return coefficients


@jit(nopython=True, nogil=True)
def circumcenter(a, b, c):
    """
    Spherical circumcenter of the triangle (a, b, c).

    For a counter-clockwise triangle the result lies on the same side of the
    sphere as the triangle.
    """
    e1x = b[0] - a[0]
    e1y = b[1] - a[1]
    e1z = b[2] - a[2]
    e2x = c[0] - a[0]
    e2y = c[1] - a[1]
    e2z = c[2] - a[2]

    center = np.empty(3)
    center[0] = e1y * e2z - e1z * e2y
    center[1] = e1z * e2x - e1x * e2z
    center[2] = e1x * e2y - e1y * e2x
    norm = np.sqrt(center[0] ** 2 + center[1] ** 2 + center[2] ** 2)
    for i in range(3):
        center[i] /= norm
    return center


@jit(nopython=True, nogil=True, parallel=True)
def compute_circumcenters(vertices, triangles):
    """
    Circumcenters of every triangle.

    Returns:
        (n_triangles, 4) array. Columns 0-2 hold the unit circumcenter and
        column 3 the dot product of the circumcenter with a corner. A point
        lies inside the circumcircle when its dot product with the center
        exceeds column 3.
    """
    n_triangles = triangles.shape[0]
    result = np.empty((n_triangles, 4))

    for t in prange(n_triangles):
        a = vertices[triangles[t, 0]]
        center = circumcenter(a, vertices[triangles[t, 1]], vertices[triangles[t, 2]])
        result[t, 0] = center[0]
        result[t, 1] = center[1]
        result[t, 2] = center[2]
        result[t, 3] = center[0] * a[0] + center[1] * a[1] + center[2] * a[2]

    return result


@jit(nopython=True, nogil=True)
def spherical_triangle_area(a, b, c):
    """
    Signed area of the spherical triangle (a, b, c) on the unit sphere.

    Uses the formula of Van Oosterom and Strackee (1983). The area is positive
    for counter-clockwise triangles.
    """
    numerator = triple_product(a, b, c)
    denominator = (
        1.0
        + a[0] * b[0] + a[1] * b[1] + a[2] * b[2]
        + b[0] * c[0] + b[1] * c[1] + b[2] * c[2]
        + c[0] * a[0] + c[1] * a[1] + c[2] * a[2]
    )
    return 2.0 * np.arctan2(numerator, denominator)


@jit(nopython=True, nogil=True)
def spherical_polygon_area(polygon):
    """
    Area of a simple spherical polygon given as an (n, 3) array of vertices.

    The polygon is split into a fan of triangles anchored on its first vertex;
    signed areas are summed so non-convex polygons are handled.
    """
    area = 0.0
    for k in range(1, polygon.shape[0] - 1):
        area += spherical_triangle_area(polygon[0], polygon[k], polygon[k + 1])
    return abs(area)


@jit(nopython=True, nogil=True)
def natural_spline_second_derivatives(x, y):
    """
    Second derivatives of the natural cubic spline through (x, y).

    Args:
        x: (n,) strictly increasing abscissae
        y: (n, m) ordinates; every column is an independent spline

    Returns:
        (n, m) array of second derivatives, zero at both ends.
    """
    n = x.shape[0]
    m = y.shape[1]
    y2 = np.zeros((n, m))
    work = np.zeros((n, m))

    # Decomposition loop of the tridiagonal system
    for i in range(1, n - 1):
        sig = (x[i] - x[i - 1]) / (x[i + 1] - x[i - 1])
        for j in range(m):
            p = sig * y2[i - 1, j] + 2.0
            y2[i, j] = (sig - 1.0) / p
            d = (y[i + 1, j] - y[i, j]) / (x[i + 1] - x[i]) - (y[i, j] - y[i - 1, j]) / (x[i] - x[i - 1])
            work[i, j] = (6.0 * d / (x[i + 1] - x[i - 1]) - sig * work[i - 1, j]) / p

    # Back substitution
    for k in range(n - 2, -1, -1):
        for j in range(m):
            y2[k, j] = y2[k, j] * y2[k + 1, j] + work[k, j]

    return y2
