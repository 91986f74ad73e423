"""
Tests for model metadata, profile storage, layer boundaries and the point map.
"""

import logging

import numpy as np
import pytest

from earthtess import (
    DataType,
    InvalidQueryError,
    MetaData,
    Model,
    ModelValidationError,
    Profile,
    ProfileType,
    ProfileTypeError,
)

import helpers


def make_metadata(**kwargs):
    defaults = dict(
        description="test",
        layer_names=["mantle", "crust"],
        attribute_names=["vp"],
        attribute_units=["km/s"],
    )
    defaults.update(kwargs)
    return MetaData(**defaults)


class TestMetaData:
    def test_defaults(self):
        metadata = make_metadata()
        assert metadata.n_layers == 2
        assert metadata.n_attributes == 1
        assert metadata.layer_tess_ids == [0, 0]
        assert metadata.data_type is DataType.DOUBLE
        assert metadata.get_earth_shape().name == "WGS84"

    def test_data_type_from_string(self):
        assert make_metadata(data_type="FLOAT").data_type is DataType.FLOAT

    @pytest.mark.parametrize(
        "kwargs",
        [
            dict(layer_names=[]),
            dict(layer_names=["a", "a"]),
            dict(attribute_units=[]),
            dict(layer_tess_ids=[0]),
            dict(layer_tess_ids=[1, 0]),
            dict(layer_tess_ids=[-1, 0]),
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ModelValidationError):
            make_metadata(**kwargs)

    def test_unknown_earth_shape(self):
        with pytest.raises(InvalidQueryError):
            make_metadata(earth_shape="FLAT")

    def test_lookup_by_name(self):
        metadata = make_metadata()
        assert metadata.get_layer_index("crust") == 1
        assert metadata.get_layer_index(0) == 0
        assert metadata.get_attribute_index("vp") == 0
        with pytest.raises(InvalidQueryError):
            metadata.get_layer_index("core")
        with pytest.raises(InvalidQueryError):
            metadata.get_attribute_index(3)

    def test_tessellation_count_checked(self, ico_grid):
        with pytest.raises(ModelValidationError):
            Model(ico_grid, make_metadata(layer_tess_ids=[0, 1]))


class TestModel:
    def test_profile_access(self, layered_model):
        assert layered_model.n_layers == 3
        assert layered_model.n_attributes == 2
        profile = layered_model.get_profile(3, 1)
        assert profile.kind is ProfileType.NPOINT
        assert layered_model.get_value(3, 1, 0, 0) == profile.get_value(0, 0)
        assert layered_model.get_radius_bottom(3, 1) == helpers.CORE_RADIUS
        assert layered_model.get_radius_top(3, 2) == helpers.SURFACE_RADIUS
        assert layered_model.get_depth_top(3, 2) == pytest.approx(0.0)
        assert layered_model.get_depth_bottom(3, 2) == pytest.approx(25.0)
        assert not layered_model.is_2d()

    def test_set_value(self, layered_model):
        layered_model.set_value(3, 1, 1, 2, 42.0)
        assert layered_model.get_value(3, 1, 1, 2) == 42.0

    def test_index_errors(self, layered_model):
        with pytest.raises(InvalidQueryError):
            layered_model.get_profile(layered_model.n_vertices, 0)
        with pytest.raises(InvalidQueryError):
            layered_model.get_profile(0, 3)

    def test_unset_profile(self, ico_grid):
        model = Model(ico_grid, make_metadata())
        with pytest.raises(InvalidQueryError):
            model.get_profile(0, 0)
        with pytest.raises(ModelValidationError, match="unset"):
            model.check_layer_boundaries()

    def test_attribute_count_checked(self, ico_grid):
        model = Model(ico_grid, make_metadata())
        with pytest.raises(ModelValidationError):
            model.set_profile(0, 0, Profile.constant(0.0, 1.0, [1.0, 2.0]))
        # Profiles without data carry no attributes
        model.set_profile(0, 0, Profile.empty(0.0, 1.0))

    def test_profiles_cast_to_data_type(self, ico_grid):
        model = Model(ico_grid, make_metadata(data_type=DataType.INT))
        model.set_profile(0, 0, Profile.constant(0.0, 1.0, [7.0]))
        assert model.get_profile(0, 0).data.dtype == np.int32
        with pytest.raises(InvalidQueryError):
            model.set_value(0, 0, 0, 0, np.nan)

    def test_small_boundary_mismatch_repaired(self, ico_grid, caplog):
        model = Model(ico_grid, make_metadata())
        for vertex in range(ico_grid.n_vertices):
            model.set_profile(vertex, 0, Profile.constant(3480.0, 6346.0, [8.0]))
            model.set_profile(vertex, 1, Profile.constant(6346.005, 6371.0, [6.0]))

        with caplog.at_level(logging.INFO, logger="earthtess.model"):
            assert model.check_layer_boundaries() == ico_grid.n_vertices
        assert "Repaired" in caplog.text
        assert model.get_radius_bottom(0, 1) == 6346.0
        assert model.check_layer_boundaries() == 0

    def test_large_boundary_mismatch_rejected(self, ico_grid):
        profiles = [[Profile.constant(3480.0, 6346.0, [8.0]), Profile.constant(6350.0, 6371.0, [6.0])]] * 12
        with pytest.raises(ModelValidationError, match="crust"):
            Model(ico_grid, make_metadata(), profiles)

    def test_is_2d(self, surface_model):
        assert surface_model.is_2d()

    def test_connected_vertices(self):
        grid = helpers.two_tessellation_grid()
        model = helpers.layered_model(grid, layer_tess_ids=(0, 1, 1))
        np.testing.assert_array_equal(model.connected_vertices(0), np.arange(12))
        np.testing.assert_array_equal(model.connected_vertices(2), np.arange(42))


class TestPointMap:
    def test_size_and_order(self, ico_grid):
        model = helpers.layered_model(ico_grid)
        point_map = model.point_map
        # core (1 node) + mantle (5 nodes) + crust (1 node) at every vertex
        assert point_map.size == len(point_map) == 12 * 7

        expected = [(v, layer, node) for v in range(12) for layer, n in enumerate((1, 5, 1)) for node in range(n)]
        actual = [
            (point_map.get_vertex_index(p), point_map.get_layer_index(p), point_map.get_node_index(p))
            for p in range(point_map.size)
        ]
        assert actual == expected

    def test_point_index_round_trip(self, ico_grid):
        point_map = helpers.layered_model(ico_grid).point_map
        for point in range(point_map.size):
            vertex = point_map.get_vertex_index(point)
            layer = point_map.get_layer_index(point)
            node = point_map.get_node_index(point)
            assert point_map.get_point_index(vertex, layer, node) == point

    def test_point_values(self, ico_grid):
        model = helpers.layered_model(ico_grid)
        point_map = model.point_map
        point = point_map.get_point_index(2, 1, 3)
        assert point_map.get_point_value(point, 0) == model.get_value(2, 1, 0, 3)
        point_map.set_point_value(point, 0, -5.0)
        assert model.get_value(2, 1, 0, 3) == -5.0

    def test_point_geometry(self, ico_grid):
        model = helpers.layered_model(ico_grid)
        point_map = model.point_map
        point = point_map.get_point_index(4, 1, 1)
        np.testing.assert_array_equal(point_map.get_point_unit_vector(point), ico_grid.vertices[4])
        assert point_map.get_point_radius(point) == 4500.0
        assert point_map.get_point_depth(point) == pytest.approx(6371.0 - 4500.0)

        lat, lon = point_map.get_point_lat_lon(point)
        u = model.earth_shape.get_vector_degrees(lat, lon)
        np.testing.assert_allclose(u, ico_grid.vertices[4], atol=1e-12)

    def test_surface_points_have_no_radius(self, surface_model):
        with pytest.raises(ProfileTypeError):
            surface_model.point_map.get_point_radius(0)

    def test_active_region(self, ico_grid):
        model = helpers.layered_model(ico_grid)
        mask = np.zeros(12, dtype=bool)
        mask[[1, 5]] = True
        model.set_active_region(mask, layers=["mantle"])

        point_map = model.point_map
        assert point_map.size == 10
        assert point_map.get_point_index(0, 1, 0) == -1
        assert point_map.get_point_index(1, 0, 0) == -1
        assert point_map.get_point_index(1, 1, 0) == 0
        assert point_map.get_point_index(5, 1, 4) == 9

        model.set_active_region()
        assert model.point_map.size == 12 * 7

    def test_active_region_mask_shape(self, ico_grid):
        model = helpers.layered_model(ico_grid)
        with pytest.raises(InvalidQueryError):
            model.set_active_region(np.ones(5, dtype=bool))

    def test_rebuilt_when_profiles_change(self, ico_grid):
        model = helpers.layered_model(ico_grid)
        first = model.point_map
        model.set_profile(0, 2, Profile.empty(helpers.MOHO_RADIUS, helpers.SURFACE_RADIUS))
        assert model.point_map is not first
        assert model.point_map.size == 12 * 7 - 1
        assert model.point_map.get_point_index(0, 2, 0) == -1

    def test_unconnected_vertices_excluded(self):
        grid = helpers.two_tessellation_grid()
        model = helpers.layered_model(grid, layer_tess_ids=(0, 1, 1))
        # Only the 12 coarse vertices carry core points
        assert model.point_map.size == 12 * 1 + 42 * (5 + 1)
        assert model.point_map.get_point_index(20, 0, 0) == -1
