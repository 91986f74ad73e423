"""
Earth models: a grid plus one radial profile per (vertex, layer).

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
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

import numpy as np
import xarray as xr

from earthtess.constants import LAYER_BOUNDARY_TOLERANCE, DataType
from earthtess.earth_shape import EarthShape
from earthtess.profiles import Profile
from earthtess.utils import InvalidQueryError, ModelValidationError, ProfileTypeError, check_index

if TYPE_CHECKING:
    from earthtess.grid import Grid, GridRegistry
    from earthtess.position import Position

logger = logging.getLogger(__name__)


@dataclass
class MetaData:
    """Descriptive information about a model.

    Attributes:
        description: Free text description of the model
        layer_names: Names of the layers, deepest first
        attribute_names: Names of the attributes stored in every profile
        attribute_units: Units of the attributes, one per name
        data_type: Scalar type of the stored values
        layer_tess_ids: Tessellation of every layer. Defaults to 0 for every layer
        earth_shape: Name of the EarthShape used for depth and latitude conversions
        model_software_version: Name and version of the software that built the model
        model_generation_date: When the model was built
    """

    description: str
    layer_names: list[str]
    attribute_names: list[str]
    attribute_units: list[str]
    data_type: DataType = DataType.DOUBLE
    layer_tess_ids: list[int] = field(default_factory=list)
    earth_shape: str = "WGS84"
    model_software_version: str = ""
    model_generation_date: str = ""

    def __post_init__(self) -> None:
        """Validate the metadata."""
        self.layer_names = list(self.layer_names)
        self.attribute_names = list(self.attribute_names)
        self.attribute_units = list(self.attribute_units)
        if isinstance(self.data_type, str):
            self.data_type = DataType(self.data_type.lower())
        if not self.layer_tess_ids:
            self.layer_tess_ids = [0] * len(self.layer_names)
        self.layer_tess_ids = [int(tess_id) for tess_id in self.layer_tess_ids]

        msg = None
        if not self.layer_names:
            msg = "A model needs at least one layer"
        elif len(set(self.layer_names)) != len(self.layer_names):
            msg = f"Layer names must be unique: {self.layer_names}"
        elif len(self.attribute_names) != len(self.attribute_units):
            msg = (
                f"Got {len(self.attribute_names)} attribute names but "
                f"{len(self.attribute_units)} attribute units"
            )
        elif len(self.layer_tess_ids) != len(self.layer_names):
            msg = f"Got {len(self.layer_names)} layers but {len(self.layer_tess_ids)} layer tessellation ids"
        elif min(self.layer_tess_ids) < 0 or self.layer_tess_ids != sorted(self.layer_tess_ids):
            msg = f"Layer tessellation ids must be non-negative and non-decreasing: {self.layer_tess_ids}"
        if msg is not None:
            raise ModelValidationError(msg)

        # Fails early on unknown shapes
        EarthShape.from_name(self.earth_shape)

    @property
    def n_layers(self) -> int:
        return len(self.layer_names)

    @property
    def n_attributes(self) -> int:
        return len(self.attribute_names)

    def get_earth_shape(self) -> EarthShape:
        return EarthShape.from_name(self.earth_shape)

    def get_layer_index(self, layer: int | str) -> int:
        """Resolve a layer given by name or index."""
        if isinstance(layer, str):
            try:
                return self.layer_names.index(layer)
            except ValueError:
                msg = f"Unknown layer '{layer}'. Layers are {self.layer_names}"
                raise InvalidQueryError(msg) from None
        return check_index(layer, self.n_layers, "layer")

    def get_attribute_index(self, attribute: int | str) -> int:
        """Resolve an attribute given by name or index."""
        if isinstance(attribute, str):
            try:
                return self.attribute_names.index(attribute)
            except ValueError:
                msg = f"Unknown attribute '{attribute}'. Attributes are {self.attribute_names}"
                raise InvalidQueryError(msg) from None
        return check_index(attribute, self.n_attributes, "attribute")

    def check_tessellations(self, n_tessellations: int) -> None:
        if self.layer_tess_ids[-1] >= n_tessellations:
            msg = (
                f"Layer '{self.layer_names[-1]}' uses tessellation {self.layer_tess_ids[-1]} "
                f"but the grid has {n_tessellations} tessellations"
            )
            raise ModelValidationError(msg)


class Model:
    """A 3D Earth model.

    Every layer spans the whole globe. The grid supplies the horizontal
    discretization, one tessellation per layer, and every (vertex, layer)
    pair holds a radial Profile of attribute values.
    """

    def __init__(self, grid: Grid, metadata: MetaData, profiles: Sequence[Sequence[Profile]] | None = None):
        """Initialize the model.

        Args:
            grid: The grid shared by all layers
            metadata: Model metadata
            profiles: Optional profiles indexed [vertex][layer]. The layer
                boundaries are checked when given
        """
        metadata.check_tessellations(grid.n_tessellations)
        self.grid = grid
        self.metadata = metadata
        self.earth_shape = metadata.get_earth_shape()
        self.profiles = np.empty((grid.n_vertices, metadata.n_layers), dtype=object)

        self._point_map: PointMap | None = None
        self._active_vertices: np.ndarray | None = None
        self._active_layers: frozenset[int] | None = None

        if profiles is not None:
            for vertex, column in enumerate(profiles):
                for layer, profile in enumerate(column):
                    self.set_profile(vertex, layer, profile)
            self.check_layer_boundaries()

    def __repr__(self) -> str:
        return (
            f"Model(description={self.metadata.description!r}, layers={self.metadata.layer_names}, "
            f"attributes={self.metadata.attribute_names}, grid={self.grid.grid_id})"
        )

    @property
    def n_vertices(self) -> int:
        return self.grid.n_vertices

    @property
    def n_layers(self) -> int:
        return self.metadata.n_layers

    @property
    def n_attributes(self) -> int:
        return self.metadata.n_attributes

    def get_tess_id(self, layer: int) -> int:
        check_index(layer, self.n_layers, "layer")
        return self.metadata.layer_tess_ids[layer]

    # Profiles

    def set_profile(self, vertex: int, layer: int, profile: Profile) -> None:
        """Store `profile` at (vertex, layer), casting its data to the model's data type."""
        check_index(vertex, self.n_vertices, "vertex")
        check_index(layer, self.n_layers, "layer")
        if profile.kind.has_data and profile.n_attributes != self.n_attributes:
            msg = (
                f"Profile at vertex {vertex}, layer {layer} has {profile.n_attributes} attributes "
                f"but the model has {self.n_attributes}"
            )
            raise ModelValidationError(msg)
        self.profiles[vertex, layer] = profile.astype(self.metadata.data_type.numpy_dtype)
        self._point_map = None

    def get_profile(self, vertex: int, layer: int) -> Profile:
        check_index(vertex, self.n_vertices, "vertex")
        check_index(layer, self.n_layers, "layer")
        profile = self.profiles[vertex, layer]
        if profile is None:
            msg = f"No profile has been set at vertex {vertex}, layer {layer}"
            raise InvalidQueryError(msg)
        return profile

    def get_value(self, vertex: int, layer: int, attribute: int, node: int = 0) -> float:
        return self.get_profile(vertex, layer).get_value(attribute, node)

    def set_value(self, vertex: int, layer: int, attribute: int, node: int, value: float) -> None:
        self.get_profile(vertex, layer).set_value(attribute, node, value)

    def get_radius_top(self, vertex: int, layer: int) -> float:
        return self.get_profile(vertex, layer).radius_top

    def get_radius_bottom(self, vertex: int, layer: int) -> float:
        return self.get_profile(vertex, layer).radius_bottom

    def get_depth_top(self, vertex: int, layer: int) -> float:
        return self.earth_shape.get_depth(self.grid.get_vertex(vertex), self.get_radius_top(vertex, layer))

    def get_depth_bottom(self, vertex: int, layer: int) -> float:
        return self.earth_shape.get_depth(self.grid.get_vertex(vertex), self.get_radius_bottom(vertex, layer))

    def is_2d(self) -> bool:
        """True when every profile is a surface profile."""
        return all(profile is not None and not profile.kind.has_radii for profile in self.profiles.flat)

    def check_layer_boundaries(self) -> int:
        """Verify that adjacent layers meet at every vertex.

        Gaps or overlaps up to LAYER_BOUNDARY_TOLERANCE km are repaired by
        moving the bottom of the upper layer to the top of the lower one.

        Returns:
            Number of repaired boundaries.
        """
        missing = [vertex for vertex in range(self.n_vertices) if any(p is None for p in self.profiles[vertex])]
        if missing:
            msg = f"{len(missing)} vertices have unset profiles (first: vertex {missing[0]})"
            raise ModelValidationError(msg)

        repaired = 0
        for vertex in range(self.n_vertices):
            for layer in range(1, self.n_layers):
                lower = self.profiles[vertex, layer - 1]
                upper = self.profiles[vertex, layer]
                if not (lower.kind.has_radii and upper.kind.has_radii):
                    continue
                mismatch = upper.radius_bottom - lower.radius_top
                if mismatch == 0.0:
                    continue
                if abs(mismatch) > LAYER_BOUNDARY_TOLERANCE:
                    msg = (
                        f"Layer '{self.metadata.layer_names[layer]}' at vertex {vertex} starts at radius "
                        f"{upper.radius_bottom} but the layer below ends at {lower.radius_top}"
                    )
                    raise ModelValidationError(msg)
                upper.set_radius_bottom(lower.radius_top)
                repaired += 1

        if repaired:
            logger.info("Repaired %d layer boundaries that differed by less than %g km", repaired, LAYER_BOUNDARY_TOLERANCE)
        return repaired

    def connected_vertices(self, layer: int) -> np.ndarray:
        """Indices of the vertices that belong to the tessellation of `layer`."""
        return self.grid.get_vertex_indices(self.get_tess_id(layer))

    # Active region and point map

    def set_active_region(self, vertex_mask: np.ndarray | None = None, layers: Iterable[int | str] | None = None) -> None:
        """Restrict the PointMap to a subset of vertices and layers.

        Args:
            vertex_mask: Boolean array over the grid vertices, or None for all vertices
            layers: Layer indices or names, or None for all layers
        """
        if vertex_mask is not None:
            vertex_mask = np.asarray(vertex_mask, dtype=bool)
            if vertex_mask.shape != (self.n_vertices,):
                msg = f"vertex_mask must have shape ({self.n_vertices},), got {vertex_mask.shape}"
                raise InvalidQueryError(msg)
        self._active_vertices = vertex_mask
        self._active_layers = None if layers is None else frozenset(self.metadata.get_layer_index(x) for x in layers)
        self._point_map = None

    def is_active(self, vertex: int, layer: int) -> bool:
        if self._active_layers is not None and layer not in self._active_layers:
            return False
        return self._active_vertices is None or bool(self._active_vertices[vertex])

    @property
    def point_map(self) -> PointMap:
        if self._point_map is None:
            self._point_map = PointMap(self)
        return self._point_map

    # Queries

    def get_position(
        self,
        horizontal: Literal["linear", "natural_neighbor"] = "linear",
        radial: Literal["linear", "cubic_spline"] = "linear",
        allow_radius_out_of_range: bool = False,
    ) -> Position:
        """Create a Position for querying this model."""
        from earthtess.position import Position

        return Position(self, horizontal=horizontal, radial=radial, allow_radius_out_of_range=allow_radius_out_of_range)

    def interpolate_points(
        self,
        lats: np.ndarray | Sequence[float],
        lons: np.ndarray | Sequence[float],
        depths: np.ndarray | Sequence[float] | None = None,
        attributes: Sequence[int | str] | None = None,
        layer: int | str | None = None,
        horizontal: Literal["linear", "natural_neighbor"] = "linear",
        radial: Literal["linear", "cubic_spline"] = "linear",
    ) -> xr.Dataset:
        """Interpolate attributes at many points.

        Args:
            lats: Geographic latitudes in degrees
            lons: Longitudes in degrees
            depths: Depths in km. Must be None for 2D models
            attributes: Attributes to return (names or indices). Defaults to all
            layer: Optional layer constraint
            horizontal: Horizontal interpolation method
            radial: Radial interpolation method

        Returns:
            Dataset with one variable per attribute along dimension "point".
        """
        lats = np.atleast_1d(np.asarray(lats, dtype=np.float64))
        lons = np.atleast_1d(np.asarray(lons, dtype=np.float64))
        if lats.shape != lons.shape:
            msg = f"lats and lons must have the same shape, got {lats.shape} and {lons.shape}"
            raise InvalidQueryError(msg)
        if depths is not None:
            depths = np.broadcast_to(np.asarray(depths, dtype=np.float64), lats.shape)

        indices = list(range(self.n_attributes)) if attributes is None else [
            self.metadata.get_attribute_index(attribute) for attribute in attributes
        ]
        layer_index = None if layer is None else self.metadata.get_layer_index(layer)

        position = self.get_position(horizontal=horizontal, radial=radial)
        values = np.empty((len(lats), self.n_attributes))
        for i, (lat, lon) in enumerate(zip(lats, lons)):
            if depths is None:
                position.set_surface(lat, lon)
            else:
                position.set(lat, lon, depths[i], layer=layer_index)
            values[i] = position.get_values()

        coords = {"lat": ("point", lats), "lon": ("point", lons)}
        if depths is not None:
            coords["depth"] = ("point", np.array(depths))
        data_vars = {
            self.metadata.attribute_names[index]: (
                "point",
                values[:, index],
                {"units": self.metadata.attribute_units[index]},
            )
            for index in indices
        }
        return xr.Dataset(
            data_vars,
            coords=coords,
            attrs={"description": self.metadata.description, "horizontal": horizontal, "radial": radial},
        )

    # Persistence

    def to_file(self, filepath: str) -> None:
        """Write the grid and model to a netCDF file."""
        from earthtess.io import _model_to_netcdf

        _model_to_netcdf(self, filepath)

    @classmethod
    def from_file(cls, filepath: str, registry: GridRegistry | None = None) -> Model:
        """Read a model written by `to_file`.

        Args:
            filepath: Path of the netCDF file
            registry: Optional registry through which the grid is shared with other models
        """
        from earthtess.io import _model_from_netcdf

        return _model_from_netcdf(filepath, registry=registry)


class PointMap:
    """Dense numbering of the active (vertex, layer, node) triples of a model.

    Points are ordered by vertex, then layer, then node. Only vertices that
    are connected in the tessellation of a layer and inside the active region
    are numbered.
    """

    def __init__(self, model: Model):
        self.model = model
        first_point = np.full((model.n_vertices, model.n_layers), -1, dtype=np.int64)
        n_nodes = np.zeros((model.n_vertices, model.n_layers), dtype=np.int64)

        connected = np.zeros((model.grid.n_tessellations, model.n_vertices), dtype=bool)
        for tess_id in range(model.grid.n_tessellations):
            connected[tess_id, model.grid.get_vertex_indices(tess_id)] = True

        count = 0
        for vertex in range(model.n_vertices):
            for layer in range(model.n_layers):
                if not (connected[model.get_tess_id(layer), vertex] and model.is_active(vertex, layer)):
                    continue
                profile = model.profiles[vertex, layer]
                if profile is None or not profile.n_data:
                    continue
                first_point[vertex, layer] = count
                n_nodes[vertex, layer] = profile.n_data
                count += profile.n_data

        self._first_point = first_point
        self._n_nodes = n_nodes
        active = first_point >= 0
        counts = n_nodes[active]
        self._vertices = np.repeat(np.nonzero(active)[0], counts)
        self._layers = np.repeat(np.nonzero(active)[1], counts)
        starts = np.repeat(first_point[active], counts)
        self._nodes = np.arange(count) - starts

    def __len__(self) -> int:
        return self.size

    @property
    def size(self) -> int:
        return len(self._vertices)

    def get_point_index(self, vertex: int, layer: int, node: int) -> int:
        """Index of a point, or -1 when the (vertex, layer) pair is not active."""
        check_index(vertex, self.model.n_vertices, "vertex")
        check_index(layer, self.model.n_layers, "layer")
        first = self._first_point[vertex, layer]
        if first < 0:
            return -1
        check_index(node, self._n_nodes[vertex, layer], "node")
        return int(first + node)

    def get_vertex_index(self, point: int) -> int:
        return int(self._vertices[check_index(point, self.size, "point")])

    def get_layer_index(self, point: int) -> int:
        return int(self._layers[check_index(point, self.size, "point")])

    def get_node_index(self, point: int) -> int:
        return int(self._nodes[check_index(point, self.size, "point")])

    def _profile(self, point: int) -> tuple[Profile, int]:
        point = check_index(point, self.size, "point")
        return self.model.profiles[self._vertices[point], self._layers[point]], int(self._nodes[point])

    def get_point_value(self, point: int, attribute: int) -> float:
        profile, node = self._profile(point)
        return profile.get_value(attribute, node)

    def set_point_value(self, point: int, attribute: int, value: float) -> None:
        profile, node = self._profile(point)
        profile.set_value(attribute, node, value)

    def get_point_unit_vector(self, point: int) -> np.ndarray:
        return self.model.grid.get_vertex(self.get_vertex_index(point))

    def get_point_radius(self, point: int) -> float:
        profile, node = self._profile(point)
        if not profile.kind.has_radii:
            msg = f"Point {point} belongs to a {profile.kind.name} profile, which has no radius"
            raise ProfileTypeError(msg)
        return profile.get_radius(node)

    def get_point_depth(self, point: int) -> float:
        return self.model.earth_shape.get_depth(self.get_point_unit_vector(point), self.get_point_radius(point))

    def get_point_lat_lon(self, point: int) -> tuple[float, float]:
        """Geographic latitude and longitude of a point in degrees."""
        u = self.get_point_unit_vector(point)
        return self.model.earth_shape.get_lat_degrees(u), self.model.earth_shape.get_lon_degrees(u)
