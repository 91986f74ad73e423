"""
Tests for the Numba-optimized kernels.
"""

import numpy as np

from earthtess.methods import _numba_kernels

import helpers

X = np.array([1.0, 0.0, 0.0])
Y = np.array([0.0, 1.0, 0.0])
Z = np.array([0.0, 0.0, 1.0])


def test_triple_product():
    """Test the sign convention of triple_product."""
    assert _numba_kernels.triple_product(Z, X, Y) == 1.0
    assert _numba_kernels.triple_product(Z, Y, X) == -1.0


def test_linear_coefficients_octant():
    """Barycentric coefficients inside the first octant triangle."""
    u = np.array([1.0, 2.0, 3.0])
    u /= np.linalg.norm(u)
    coefficients = _numba_kernels.linear_coefficients(X, Y, Z, u)

    np.testing.assert_allclose(coefficients.sum(), 1.0, atol=1e-14)
    np.testing.assert_allclose(coefficients, [1 / 6, 2 / 6, 3 / 6], atol=1e-14)


def test_linear_coefficients_at_corner():
    coefficients = _numba_kernels.linear_coefficients(X, Y, Z, Y)
    np.testing.assert_allclose(coefficients, [0.0, 1.0, 0.0], atol=1e-15)


def test_circumcenter_equidistant():
    u = np.array([1.0, 1.0, 1.0]) / np.sqrt(3.0)
    center = _numba_kernels.circumcenter(X, Y, Z)
    np.testing.assert_allclose(center, u, atol=1e-14)

    a, b, c = helpers.random_unit_vectors(3, seed=3)
    if _numba_kernels.triple_product(a, b, c) < 0:
        b, c = c, b
    center = _numba_kernels.circumcenter(a, b, c)
    np.testing.assert_allclose(np.linalg.norm(center), 1.0)
    np.testing.assert_allclose([center @ a, center @ b], [center @ c, center @ c], atol=1e-12)
    # Same hemisphere as the triangle
    assert center @ (a + b + c) > 0


def test_compute_circumcenters():
    grid = helpers.icosahedron_grid()
    table = _numba_kernels.compute_circumcenters(grid.vertices, grid.triangles)

    assert table.shape == (20, 4)
    for t, corners in enumerate(grid.triangles):
        dots = grid.vertices[corners] @ table[t, :3]
        np.testing.assert_allclose(dots, table[t, 3], atol=1e-12)
        # No other vertex lies inside the circumcircle of a Delaunay triangle
        assert np.all(grid.vertices @ table[t, :3] <= table[t, 3] + 1e-12)


def test_spherical_triangle_area_octant():
    np.testing.assert_allclose(_numba_kernels.spherical_triangle_area(X, Y, Z), np.pi / 2)
    np.testing.assert_allclose(_numba_kernels.spherical_triangle_area(X, Z, Y), -np.pi / 2)


def test_spherical_polygon_area_sums_to_sphere():
    grid = helpers.icosahedron_grid()
    total = sum(
        _numba_kernels.spherical_polygon_area(grid.vertices[corners]) for corners in grid.triangles
    )
    np.testing.assert_allclose(total, 4 * np.pi)


def test_spherical_polygon_area_orientation_independent():
    square = np.array([X, Y, -X, -Y], dtype=np.float64)
    lifted = square + 0.5 * Z
    lifted /= np.linalg.norm(lifted, axis=1, keepdims=True)

    area = _numba_kernels.spherical_polygon_area(lifted)
    assert area > 0
    np.testing.assert_allclose(_numba_kernels.spherical_polygon_area(lifted[::-1].copy()), area)


def test_walk_triangle_finds_containing_triangle():
    grid = helpers.subdivided_grid(2)
    for u in helpers.random_unit_vectors(20):
        triangle = _numba_kernels.walk_triangle(
            grid.vertices, grid.triangles, grid.neighbors, 0, u, 1000, np.cos(1e-7)
        )
        assert triangle >= 0
        a, b, c = grid.vertices[grid.triangles[triangle]]
        assert _numba_kernels.triple_product(u, b, c) >= 0
        assert _numba_kernels.triple_product(u, c, a) >= 0
        assert _numba_kernels.triple_product(u, a, b) >= 0


def test_walk_triangle_step_limit():
    grid = helpers.subdivided_grid(2)
    u = -grid.vertices[grid.triangles[0]].sum(axis=0)
    u /= np.linalg.norm(u)
    assert _numba_kernels.walk_triangle(grid.vertices, grid.triangles, grid.neighbors, 0, u, 1, np.cos(1e-7)) == -1


def test_natural_spline_of_line_has_no_curvature():
    """A natural spline through a straight line has zero curvature everywhere."""
    x = np.array([0.0, 1.0, 2.5, 4.0, 5.0])
    y = np.column_stack([3.0 * x - 1.0, np.ones_like(x)])
    y2 = _numba_kernels.natural_spline_second_derivatives(x, y)

    assert y2.shape == (5, 2)
    np.testing.assert_allclose(y2, 0.0, atol=1e-12)


def test_natural_spline_end_conditions():
    x = np.linspace(0.0, 1.0, 6)
    y = (x**3).reshape(-1, 1)
    y2 = _numba_kernels.natural_spline_second_derivatives(x, y)

    assert y2[0, 0] == 0.0
    assert y2[-1, 0] == 0.0
    assert np.all(y2[1:-1, 0] > 0)
