"""
Builders for small grids and models used across the test suite.

Vertices are triangulated with scipy's ConvexHull; the hull of points on the
unit sphere is their spherical Delaunay triangulation.
"""

import numpy as np
from scipy.spatial import ConvexHull

from earthtess import Grid, MetaData, Model, Profile

PHI = (1.0 + np.sqrt(5.0)) / 2.0


def icosahedron_vertices():
    vertices = np.array(
        [
            [-1, PHI, 0],
            [1, PHI, 0],
            [-1, -PHI, 0],
            [1, -PHI, 0],
            [0, -1, PHI],
            [0, 1, PHI],
            [0, -1, -PHI],
            [0, 1, -PHI],
            [PHI, 0, -1],
            [PHI, 0, 1],
            [-PHI, 0, -1],
            [-PHI, 0, 1],
        ],
        dtype=np.float64,
    )
    return vertices / np.linalg.norm(vertices, axis=1, keepdims=True)


def triangulate(vertices):
    """Counter-clockwise (seen from outside) triangles of the convex hull of `vertices`."""
    triangles = ConvexHull(vertices).simplices.copy()
    v0, v1, v2 = (vertices[triangles[:, i]] for i in range(3))
    flip = np.einsum("ij,ij->i", v0, np.cross(v1, v2)) < 0
    triangles[flip] = triangles[flip][:, [0, 2, 1]]
    return triangles


def subdivide(vertices, triangles):
    """Split every triangle into four, adding normalized edge midpoints after the existing vertices."""
    vertices = list(vertices)
    midpoints = {}
    for a, b, c in triangles:
        for edge in ((a, b), (b, c), (c, a)):
            key = tuple(sorted(edge))
            if key not in midpoints:
                mid = vertices[key[0]] + vertices[key[1]]
                vertices.append(mid / np.linalg.norm(mid))
                midpoints[key] = len(vertices) - 1
    return np.array(vertices)


def icosahedron_grid():
    vertices = icosahedron_vertices()
    return Grid(vertices, triangulate(vertices), [(0, 20)], [[0]])


def subdivided_vertices(n_subdivisions):
    vertices = icosahedron_vertices()
    for _ in range(n_subdivisions):
        vertices = subdivide(vertices, triangulate(vertices))
    return vertices


def subdivided_grid(n_subdivisions=2):
    vertices = subdivided_vertices(n_subdivisions)
    triangles = triangulate(vertices)
    return Grid(vertices, triangles, [(0, len(triangles))], [[0]])


def multilevel_grid(n_levels=3):
    """One tessellation whose level k is the icosahedron subdivided k times."""
    vertices = subdivided_vertices(n_levels - 1)
    levels = []
    n = 12
    for _ in range(n_levels):
        levels.append(triangulate(vertices[:n]))
        n = n + len(levels[-1]) * 3 // 2
    return Grid.from_tessellations(vertices, [levels])


def two_tessellation_grid():
    """Tessellation 0 is the icosahedron; tessellation 1 refines it once."""
    vertices = subdivided_vertices(1)
    coarse = triangulate(vertices[:12])
    return Grid.from_tessellations(vertices, [[coarse], [coarse, triangulate(vertices)]])


def random_grid(n_vertices=300, seed=42):
    rng = np.random.default_rng(seed)
    vertices = rng.normal(size=(n_vertices, 3))
    vertices /= np.linalg.norm(vertices, axis=1, keepdims=True)
    triangles = triangulate(vertices)
    return Grid(vertices, triangles, [(0, len(triangles))], [[0]])


def random_unit_vectors(n, seed=7):
    rng = np.random.default_rng(seed)
    vectors = rng.normal(size=(n, 3))
    return vectors / np.linalg.norm(vectors, axis=1, keepdims=True)


def smooth_field(u):
    """A smooth, strictly positive test field on the sphere."""
    u = np.asarray(u)
    return 2.0 + 0.5 * u[..., 0] - 0.25 * u[..., 1] + 0.75 * u[..., 2] ** 2


def surface_model(grid, data_type="double"):
    """2D model with one attribute equal to `smooth_field` at every vertex."""
    metadata = MetaData("surface test model", ["surface"], ["value"], ["none"], data_type=data_type)
    profiles = [[Profile.surface([smooth_field(v)])] for v in grid.vertices]
    return Model(grid, metadata, profiles)


CORE_RADIUS = 3480.0
MOHO_RADIUS = 6346.0
SURFACE_RADIUS = 6371.0


def layered_model(grid, layer_tess_ids=(0, 0, 0)):
    """Three-layer model: constant core, NPOINT mantle and crust.

    Attribute 0 ("vp") increases with radius in the mantle; attribute 1
    ("rho") carries `smooth_field` so horizontal interpolation is visible.
    """
    metadata = MetaData(
        "layered test model",
        ["core", "mantle", "crust"],
        ["vp", "rho"],
        ["km/s", "g/cc"],
        layer_tess_ids=list(layer_tess_ids),
        earth_shape="SPHERE",
    )
    model = Model(grid, metadata)
    mantle_radii = np.array([CORE_RADIUS, 4500.0, 5500.0, 6000.0, MOHO_RADIUS])
    for vertex, u in enumerate(grid.vertices):
        field = smooth_field(u)
        model.set_profile(vertex, 0, Profile.constant(0.0, CORE_RADIUS, [8.0, 10.0]))
        mantle = np.column_stack([8.0 + mantle_radii / 1000.0, np.full(5, field)])
        model.set_profile(vertex, 1, Profile.npoint(mantle_radii, mantle))
        model.set_profile(vertex, 2, Profile.constant(MOHO_RADIUS, SURFACE_RADIUS, [6.0, field]))
    model.check_layer_boundaries()
    return model
