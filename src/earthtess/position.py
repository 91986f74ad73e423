"""
Position: a reusable query context that interpolates a model at one point.

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

import math
from typing import TYPE_CHECKING, Literal

import numpy as np

from earthtess.constants import LAYER_SELECTION_RTOL, ProfileType
from earthtess.interpolation.linear import LinearInterpolator
from earthtess.interpolation.natural_neighbor import NaturalNeighborInterpolator
from earthtess.utils import InvalidQueryError, ProfileTypeError, check_index, normalize

if TYPE_CHECKING:
    from earthtess.interpolation.base import HorizontalInterpolator
    from earthtess.model import Model
    from earthtess.profiles import Profile

_HORIZONTAL_INTERPOLATORS: dict[str, type[HorizontalInterpolator]] = {
    "linear": LinearInterpolator,
    "natural_neighbor": NaturalNeighborInterpolator,
}

_RADIAL_METHODS = ("linear", "cubic_spline")


class Position:
    """Interpolates a model at a point given by a unit vector and a radius.

    The horizontal coefficients of every tessellation are computed only when
    a layer of that tessellation is queried, and are reused when only the
    radius changes. The triangle found by the previous query seeds the next
    point location walk, so nearby queries are cheap.

    A Position owns scratch buffers and must not be shared between threads.
    """

    def __init__(
        self,
        model: Model,
        horizontal: Literal["linear", "natural_neighbor"] = "linear",
        radial: Literal["linear", "cubic_spline"] = "linear",
        allow_radius_out_of_range: bool = False,
    ):
        """Initialize the position.

        Args:
            model: The model to query
            horizontal: Horizontal interpolation method ('linear' or 'natural_neighbor')
            radial: Radial interpolation method ('linear' or 'cubic_spline')
            allow_radius_out_of_range: Extrapolate profiles beyond their end radii
                instead of clamping
        """
        if horizontal not in _HORIZONTAL_INTERPOLATORS:
            msg = f"Unsupported horizontal interpolation method: {horizontal}"
            raise InvalidQueryError(msg)
        if radial not in _RADIAL_METHODS:
            msg = f"Unsupported radial interpolation method: {radial}"
            raise InvalidQueryError(msg)

        self.model = model
        self.grid = model.grid
        self.horizontal = horizontal
        self.radial = radial
        self.allow_radius_out_of_range = allow_radius_out_of_range
        self.interpolator = _HORIZONTAL_INTERPOLATORS[horizontal](self.grid)

        n_tessellations = self.grid.n_tessellations
        self._max_tess_level: list[int | None] = [None] * n_tessellations
        self._triangles = [-1] * n_tessellations
        self._coefficients: dict[int, tuple[np.ndarray, np.ndarray]] = {}

        self._u: np.ndarray | None = None
        self._radius = math.nan
        self._layer_constraint: int | None = None
        self._layer: int | None = None
        self._surface = False

    def __repr__(self) -> str:
        if self._u is None:
            return f"Position(unset, horizontal={self.horizontal}, radial={self.radial})"
        return f"Position(u={self._u.tolist()}, radius={self._radius:g}, layer={self._layer_constraint})"

    # Setters

    def set(self, lat: float, lon: float, depth: float, layer: int | None = None) -> None:
        """Position at a geographic latitude and longitude (degrees) and a depth (km)."""
        u = self.model.earth_shape.get_vector_degrees(lat, lon)
        self.set_vector(u, self.model.earth_shape.get_radius(u, depth), layer)

    def set_vector(self, u: np.ndarray, radius: float, layer: int | None = None) -> None:
        """Position at unit vector `u` and `radius` km, optionally constrained to `layer`."""
        if layer is not None:
            layer = check_index(layer, self.model.n_layers, "layer")
        self._set_horizontal(u)
        self._surface = False
        self._layer_constraint = layer
        self._radius = float(radius)
        self._layer = layer

    def set_top(self, layer: int, u: np.ndarray) -> None:
        """Position at the top of `layer` below unit vector `u`."""
        layer = check_index(layer, self.model.n_layers, "layer")
        self._set_horizontal(u)
        self._surface = False
        self._layer_constraint = layer
        self._layer = layer
        self._radius = self.get_radius_top(layer)

    def set_bottom(self, layer: int, u: np.ndarray) -> None:
        """Position at the bottom of `layer` below unit vector `u`."""
        layer = check_index(layer, self.model.n_layers, "layer")
        self._set_horizontal(u)
        self._surface = False
        self._layer_constraint = layer
        self._layer = layer
        self._radius = self.get_radius_bottom(layer)

    def set_radius(self, radius: float) -> None:
        """Change the radius, keeping the horizontal position and layer constraint."""
        self._check_set()
        self._radius = float(radius)
        self._layer = self._layer_constraint

    def set_depth(self, depth: float) -> None:
        self.set_radius(self.get_earth_radius() - depth)

    def set_surface(self, lat: float, lon: float) -> None:
        """Position on the surface of a 2D model.

        Raises:
            ProfileTypeError: If the model has radial profiles.
        """
        if not self.model.is_2d():
            msg = "set_surface is only supported for 2D models; use set() with a depth"
            raise ProfileTypeError(msg)
        self._set_horizontal(self.model.earth_shape.get_vector_degrees(lat, lon))
        self._surface = True
        self._radius = math.nan
        self._layer_constraint = 0
        self._layer = 0

    def set_max_tess_level(self, layer: int, level: int | None) -> None:
        """Cap the tessellation level used for `layer` (and every layer sharing its tessellation).

        Args:
            layer: Layer index
            level: Level relative to the tessellation, or None to use the top level
        """
        tess_id = self.model.get_tess_id(layer)
        if level is not None:
            level = check_index(level, self.grid.get_n_levels(tess_id), "tessellation level")
        if level != self._max_tess_level[tess_id]:
            self._max_tess_level[tess_id] = level
            self._coefficients.pop(tess_id, None)

    def _set_horizontal(self, u: np.ndarray) -> None:
        u = np.ascontiguousarray(normalize(u), dtype=np.float64)
        if self._u is None or not np.array_equal(u, self._u):
            self._u = u
            self._coefficients.clear()

    def _check_set(self) -> np.ndarray:
        if self._u is None:
            msg = "Position has not been set"
            raise InvalidQueryError(msg)
        return self._u

    # Horizontal state

    def _get_coefficients(self, tess_id: int) -> tuple[np.ndarray, np.ndarray]:
        u = self._check_set()
        if tess_id not in self._coefficients:
            triangle, _ = self.grid.find_triangle_in_tessellation(
                tess_id,
                u,
                start=self._triangles[tess_id],
                max_level=self._max_tess_level[tess_id],
            )
            self._triangles[tess_id] = triangle
            self._coefficients[tess_id] = self.interpolator.get_coefficients(triangle, u)
        return self._coefficients[tess_id]

    def get_horizontal_coefficients(self, layer: int | None = None) -> list[tuple[int, float]]:
        """(vertex, coefficient) pairs of the horizontal interpolation in the tessellation of `layer`."""
        layer = self.get_layer_id() if layer is None else layer
        vertices, coefficients = self._get_coefficients(self.model.get_tess_id(layer))
        return [(int(v), float(c)) for v, c in zip(vertices, coefficients)]

    def get_triangle(self, layer: int | None = None) -> int:
        """Triangle containing the position in the tessellation of `layer`."""
        layer = self.get_layer_id() if layer is None else layer
        tess_id = self.model.get_tess_id(layer)
        self._get_coefficients(tess_id)
        return self._triangles[tess_id]

    def _interpolate_radius(self, layer: int, top: bool) -> float:
        vertices, coefficients = self._get_coefficients(self.model.get_tess_id(layer))
        radius = 0.0
        for vertex, coefficient in zip(vertices, coefficients):
            profile = self.model.get_profile(vertex, layer)
            radius += coefficient * (profile.radius_top if top else profile.radius_bottom)
        return radius

    def get_radius_top(self, layer: int | None = None) -> float:
        """Radius of the top of `layer` interpolated at this position."""
        layer = self.get_layer_id() if layer is None else check_index(layer, self.model.n_layers, "layer")
        return self._interpolate_radius(layer, top=True)

    def get_radius_bottom(self, layer: int | None = None) -> float:
        layer = self.get_layer_id() if layer is None else check_index(layer, self.model.n_layers, "layer")
        return self._interpolate_radius(layer, top=False)

    # Layer selection

    def get_layer_id(self) -> int:
        """Layer that contains the position.

        Without a layer constraint this is the highest layer of non-zero
        thickness whose bottom lies at or below the radius, or the lowest
        layer of non-zero thickness when the radius is below all of them.
        """
        self._check_set()
        if self._layer is None:
            self._layer = self._select_layer()
        return self._layer

    def _select_layer(self) -> int:
        # Interpolated bottoms carry rounding noise; a radius on a boundary belongs to the upper layer
        radius = self._radius + LAYER_SELECTION_RTOL * max(1.0, abs(self._radius))
        lowest = None
        for layer in range(self.model.n_layers - 1, -1, -1):
            bottom = self.get_radius_bottom(layer)
            if self.get_radius_top(layer) - bottom <= 0.0:
                continue
            if bottom <= radius:
                return layer
            lowest = layer
        return 0 if lowest is None else lowest

    # Values

    def _profile_radius(self, profile: Profile) -> float:
        if self._surface or self._layer_constraint is None or not profile.kind.has_radii:
            return self._radius
        return min(max(self._radius, profile.radius_bottom), profile.radius_top)

    def _contributions(self) -> tuple[int, list[tuple[int, float, Profile]]]:
        layer = self.get_layer_id()
        vertices, coefficients = self._get_coefficients(self.model.get_tess_id(layer))
        contributions = []
        for vertex, coefficient in zip(vertices, coefficients):
            profile = self.model.get_profile(vertex, layer)
            if profile.kind is ProfileType.EMPTY:
                msg = f"Vertex {vertex} contributes an EMPTY profile in layer '{self.model.metadata.layer_names[layer]}'"
                raise ProfileTypeError(msg)
            contributions.append((int(vertex), float(coefficient), profile))
        return layer, contributions

    def get_values(self) -> np.ndarray:
        """Interpolated values of every attribute."""
        _, contributions = self._contributions()
        values = np.zeros(self.model.n_attributes)
        for _, coefficient, profile in contributions:
            values += coefficient * profile.interpolate(
                self._profile_radius(profile), self.radial, self.allow_radius_out_of_range
            )
        return values

    def get_value(self, attribute: int) -> float:
        check_index(attribute, self.model.n_attributes, "attribute")
        return float(self.get_values()[attribute])

    def get_weights(self, weights: dict[int, float] | None = None, scale: float = 1.0) -> dict[int, float]:
        """Accumulate the weight of every model point that contributes to this position.

        Args:
            weights: Dictionary to add to. A new one is created when None
            scale: Factor applied to every weight

        Returns:
            Mapping of PointMap index to weight.
        """
        layer, contributions = self._contributions()
        point_map = self.model.point_map
        weights = {} if weights is None else weights
        for vertex, coefficient, profile in contributions:
            nodes, radial_weights = profile.get_radial_coefficients(
                self._profile_radius(profile), self.radial, self.allow_radius_out_of_range
            )
            for node, radial_weight in zip(nodes, radial_weights):
                point = point_map.get_point_index(vertex, layer, int(node))
                if point < 0:
                    msg = f"Vertex {vertex} of layer {layer} is outside the active region"
                    raise InvalidQueryError(msg)
                weights[point] = weights.get(point, 0.0) + scale * coefficient * float(radial_weight)
        return weights

    # Geometry

    def get_vector(self) -> np.ndarray:
        return self._check_set()

    def get_radius(self) -> float:
        self._check_set()
        return self._radius

    def get_earth_radius(self) -> float:
        return self.model.earth_shape.get_earth_radius(self._check_set())

    def get_depth(self) -> float:
        return self.get_earth_radius() - self.get_radius()

    def get_lat_lon(self) -> tuple[float, float]:
        """Geographic latitude and longitude in degrees."""
        u = self._check_set()
        return self.model.earth_shape.get_lat_degrees(u), self.model.earth_shape.get_lon_degrees(u)

    def get_closest_vertex(self) -> int:
        """Grid vertex nearest to the position in the tessellation of the current layer."""
        u = self._check_set()
        return self.grid.find_closest_vertex(u, self.model.get_tess_id(self.get_layer_id()))
