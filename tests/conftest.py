import pytest

import helpers


@pytest.fixture(scope="session")
def ico_grid():
    return helpers.icosahedron_grid()


@pytest.fixture(scope="session")
def fine_grid():
    return helpers.subdivided_grid(3)


@pytest.fixture(scope="session")
def random_grid():
    return helpers.random_grid()


@pytest.fixture(scope="session")
def multilevel_grid():
    return helpers.multilevel_grid(3)


@pytest.fixture
def layered_model(fine_grid):
    return helpers.layered_model(fine_grid)


@pytest.fixture
def surface_model(ico_grid):
    return helpers.surface_model(ico_grid)
